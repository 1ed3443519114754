"""
Conversation model

Parsed test conversations as handed over by the script loader: an ordered
sequence of steps, each spoken by the user ("me") or the bot. Every step has a
canonical signature, which is the only equality key used when conversations
are merged into a flow forest.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import MalformedStepError

SENDER_USER = "me"
SENDER_BOT = "bot"

_SENDER_ALIASES = {
    "me": SENDER_USER,
    "user": SENDER_USER,
    "bot": SENDER_BOT,
}

KIND_UTTERANCE = "utterance"
KIND_BUTTONS = "buttons"
KIND_BUTTON = "button"


@dataclass(frozen=True)
class ConversationStep:
    """
    A single step of a conversation.

    Attributes:
        sender: "me" for the user, "bot" for the chatbot
        text: Literal message text, may be empty for pure option steps
        buttons: Ordered option labels offered by the bot or picked by the user
        index: Position of this step within its conversation
    """
    sender: str
    text: str = ""
    buttons: Tuple[str, ...] = ()
    index: int = 0

    def __post_init__(self):
        sender = _SENDER_ALIASES.get(self.sender)
        if sender is None:
            raise ValueError(f"Unknown sender {self.sender!r}, expected one of {sorted(_SENDER_ALIASES)}")
        object.__setattr__(self, "sender", sender)
        object.__setattr__(self, "text", self.text or "")
        object.__setattr__(self, "buttons", tuple(self.buttons or ()))

    @property
    def kind(self) -> str:
        if not self.buttons:
            return KIND_UTTERANCE
        return KIND_BUTTONS if self.sender == SENDER_BOT else KIND_BUTTON

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> 'ConversationStep':
        return cls(
            sender=data.get("sender", ""),
            text=data.get("text") or data.get("messageText") or "",
            buttons=tuple(data.get("buttons", ())),
            index=index,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"sender": self.sender, "text": self.text}
        if self.buttons:
            result["buttons"] = list(self.buttons)
        return result


def step_signature(step: ConversationStep) -> Optional[str]:
    """
    Build the canonical label of a step.

    The label is `#<sender> - <text>`, followed by `BUTTONS(a,b)` for options
    offered by the bot or `BUTTON(a)` for an option picked by the user. Options
    keep their scripted order.

    Returns:
        The signature, or None if the step has neither text nor options
    """
    parts = []
    if step.text:
        parts.append(step.text)
    if step.buttons:
        keyword = "BUTTONS" if step.kind == KIND_BUTTONS else "BUTTON"
        parts.append(f"{keyword}({','.join(step.buttons)})")
    if not parts:
        return None
    return f"#{step.sender} - {' '.join(parts)}"


@dataclass(frozen=True)
class Conversation:
    """
    A parsed test conversation.

    Attributes:
        name: Conversation name from the script header
        steps: Ordered conversation steps
        source: File or directory the conversation was read from (diagnostics only)
    """
    name: str
    steps: Tuple[ConversationStep, ...] = field(default_factory=tuple)
    source: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "steps", tuple(self.steps))

    def __len__(self) -> int:
        return len(self.steps)

    def signatures(self) -> List[str]:
        """
        Signatures of all steps, in order.

        Raises:
            MalformedStepError: if a step has no derivable signature
        """
        result = []
        for position, step in enumerate(self.steps):
            signature = step_signature(step)
            if signature is None:
                raise MalformedStepError(self.name, position, self.source)
            result.append(signature)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: Optional[str] = None) -> 'Conversation':
        """
        Build a conversation from its dictionary form.

        Accepts either a flat `name` or a `header` dict with a `name` entry.
        """
        header = data.get("header") or {}
        name = data.get("name") or header.get("name") or ""
        source = data.get("source", source)
        steps = []
        for i, step in enumerate(data.get("steps", data.get("conversation", []))):
            try:
                steps.append(ConversationStep.from_dict(step, index=i))
            except ValueError as e:
                raise MalformedStepError(name, i, source, reason=str(e)) from e
        return cls(name=name, steps=tuple(steps), source=source)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "steps": [step.to_dict() for step in self.steps],
        }
        if self.source:
            result["source"] = self.source
        return result
