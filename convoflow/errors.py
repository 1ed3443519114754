"""
Error types raised while building or rendering a conversation flow forest.

Every error carries enough context (conversation name, step index, node id)
to locate the offending script.
"""

from typing import Optional


class ConvoFlowError(Exception):
    """Base class for all convoflow errors."""


class InvalidOptionsError(ConvoFlowError, ValueError):
    """Raised when a FlowOptions record cannot be built from the given values."""


class MalformedStepError(ConvoFlowError, ValueError):
    """
    A conversation step has no derivable signature.

    Attributes:
        convo_name: Name of the conversation containing the step
        step_index: Index of the step within the conversation
        source: Originating file or directory of the conversation, if known
    """

    def __init__(self, convo_name: str, step_index: int, source: Optional[str] = None, reason: str = "step has neither text nor options"):
        self.convo_name = convo_name
        self.step_index = step_index
        self.source = source
        self.reason = reason
        location = f" ({source})" if source else ""
        super().__init__(f"Conversation '{convo_name}'{location}, step {step_index}: {reason}")


class LoopExplosionError(ConvoFlowError):
    """
    The construction path grew beyond the depth ceiling.

    This points at a configuration mismatch (loops present while loop
    detection is disabled, or a ceiling set too low), not at bad data.
    """

    def __init__(self, convo_name: str, step_index: int, depth: int, max_depth: int):
        self.convo_name = convo_name
        self.step_index = step_index
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Conversation '{convo_name}', step {step_index}: depth {depth} exceeds "
            f"the ceiling of {max_depth}; enable detect_loops or raise max_depth"
        )


class DotRenderError(ConvoFlowError, ValueError):
    """
    A node cannot be rendered: its signature contains characters the DOT
    format cannot carry, or its loop reference does not resolve.
    """

    def __init__(self, node_id: str, signature: str, char: Optional[str] = None, reason: Optional[str] = None):
        self.node_id = node_id
        self.signature = signature
        self.char = char
        self.reason = reason or f"unsupported character {char!r}"
        super().__init__(f"Node {node_id}: {self.reason} in label {signature!r}")
