"""
Conversation Flow Tree
This module merges test conversations that share a common prefix into a
forest of flow nodes. Steps re-entering an ancestor can be folded into loop
references, and every node is content addressed by a bottom-up hash.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .config import FlowOptions
from .convo import Conversation
from .errors import LoopExplosionError
from .utils import content_hash


def _post_order(roots: Sequence[Any], children_of: Callable[[Any], Sequence[Any]]) -> Iterator[Any]:
    """
    Yields nodes children-first, left to right, without recursion.

    Trees get as deep as the longest conversation, so every pass over them
    walks an explicit stack.
    """
    stack = [(root, False) for root in reversed(roots)]
    while stack:
        node, expanded = stack.pop()
        if expanded:
            yield node
            continue
        stack.append((node, True))
        stack.extend((child, False) for child in reversed(children_of(node)))


@dataclass(frozen=True)
class ConvoMembership:
    """
    Records that a conversation passes through a node.

    Attributes:
        convo_id: Position of the conversation in the builder input
        conversation: The conversation itself
        step_indices: Step indices of the conversation mapped onto the node.
                      An index repeats one loop period later when a loop
                      folds back into the node.
    """
    convo_id: int
    conversation: Conversation
    step_indices: Tuple[int, ...] = ()

    @property
    def name(self) -> str:
        return self.conversation.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "convo_id": self.convo_id,
            "name": self.name,
            "step_indices": list(self.step_indices),
        }


@dataclass(frozen=True, eq=False)
class FlowNode:
    """
    One position in the shared flow forest.

    Nodes are read-only. A loop node carries `loop_ref`, the hash of the
    ancestor its continuation folds back into, and never has children.
    Traversals treat `loop_ref` as a terminal marker.

    Attributes:
        signature: Canonical label of the step(s) this node represents
        hash: Content address over signature and ordered child hashes
        memberships: Conversations passing through, in first-arrival order
        children: Child nodes in first-seen order
        loop_ref: Hash of the ancestor this node folds back into
        is_loop_target: True if a loop node below folds back into this node
        depth: Distance from the root of the tree
        steps: Underlying nodes of a summarized chain (empty otherwise)
    """
    signature: str
    hash: str
    memberships: Tuple[ConvoMembership, ...] = ()
    children: Tuple['FlowNode', ...] = ()
    loop_ref: Optional[str] = None
    is_loop_target: bool = False
    depth: int = 0
    steps: Tuple['FlowNode', ...] = ()

    def is_leaf(self) -> bool:
        """Returns True if this node has no children."""
        return len(self.children) == 0

    def is_loop(self) -> bool:
        return self.loop_ref is not None

    @property
    def labels(self) -> List[str]:
        """Signatures shown for this node, more than one for a summarized chain."""
        if self.steps:
            return [step.signature for step in self.steps]
        return [self.signature]

    @property
    def conversation_names(self) -> List[str]:
        return [membership.name for membership in self.memberships]

    def membership(self, name: str) -> Optional[ConvoMembership]:
        """Returns the first membership of the conversation called `name`."""
        return next((m for m in self.memberships if m.name == name), None)

    def step_indices(self, name: str) -> List[int]:
        membership = self.membership(name)
        return list(membership.step_indices) if membership else []

    def to_dict(self) -> Dict[str, Any]:
        """Converts node to dictionary representation."""
        converted: Dict[int, Dict[str, Any]] = {}
        for node in _post_order([self], lambda n: n.children):
            result = {
                "signature": node.signature,
                "hash": node.hash,
                "convos": [membership.to_dict() for membership in node.memberships],
                "children": [converted.pop(id(child)) for child in node.children],
            }
            if node.loop_ref is not None:
                result["loop_ref"] = node.loop_ref
            if node.steps:
                result["steps"] = node.labels
            converted[id(node)] = result
        return converted[id(self)]

    def __repr__(self) -> str:
        suffix = f", loop -> {self.loop_ref[:8]}" if self.loop_ref else ""
        return f"FlowNode('{self.signature}', {len(self.memberships)} convos, {len(self.children)} children{suffix})"


@dataclass(frozen=True, eq=False)
class FlowForest:
    """
    Ordered roots of the flow view, one per distinct opening step.
    """
    roots: Tuple[FlowNode, ...] = ()
    options: FlowOptions = field(default_factory=FlowOptions)
    summarized: bool = False

    def __len__(self) -> int:
        return len(self.roots)

    def __iter__(self) -> Iterator[FlowNode]:
        return iter(self.roots)

    def __getitem__(self, index: int) -> FlowNode:
        return self.roots[index]

    def iter_nodes(self) -> Iterator[FlowNode]:
        """Yields every node in depth-first pre-order."""
        stack = list(reversed(self.roots))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find(self, node_hash: str) -> Optional[FlowNode]:
        """Returns the first node (pre-order) with the given hash."""
        return next((node for node in self.iter_nodes() if node.hash == node_hash), None)

    def structurally_equal(self, other: 'FlowForest') -> bool:
        return [root.hash for root in self.roots] == [root.hash for root in other.roots]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "options": self.options.to_dict(),
            "summarized": self.summarized,
            "roots": [root.to_dict() for root in self.roots],
        }

    def save(self, filepath: str) -> None:
        """
        Save the forest to a JSON file.

        Args:
            filepath: Path to save the forest JSON file
        """
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)


@dataclass(eq=False)
class _DraftNode:
    """Mutable node used while the forest is under construction."""
    signature: str
    depth: int = 0
    children: List['_DraftNode'] = field(default_factory=list)
    by_signature: Dict[str, '_DraftNode'] = field(default_factory=dict)
    loops: Dict[Tuple[str, int], '_DraftNode'] = field(default_factory=dict)
    memberships: Dict[int, List[int]] = field(default_factory=dict)
    folds_into: Optional['_DraftNode'] = None
    loop_sources: int = 0
    hash: str = ""

    def child(self, signature: str) -> Optional['_DraftNode']:
        return self.by_signature.get(signature)

    def loop_child(self, signature: str, target_depth: int) -> Optional['_DraftNode']:
        return self.loops.get((signature, target_depth))

    def add_child(self, node: '_DraftNode') -> None:
        self.children.append(node)
        if node.folds_into is not None:
            self.loops[(node.signature, node.folds_into.depth)] = node
        else:
            self.by_signature[node.signature] = node

    def record(self, convo_id: int, step_index: int) -> None:
        self.memberships.setdefault(convo_id, []).append(step_index)


class FlowTreeBuilder:
    """
    Builds a FlowForest from parsed conversations.

    Conversations are merged on strict signature equality. The builder keeps
    no state between calls, so one instance can serve concurrent builds.
    """

    def __init__(self, options: Union[FlowOptions, Dict[str, Any], None] = None, **overrides: Any):
        """
        Initialize the builder.

        Args:
            options: FlowOptions record or dict of options (None for defaults)
            **overrides: Individual options overriding `options`
        """
        self.options = FlowOptions.coerce(options, **overrides)

    def build(self, conversations: Sequence[Conversation]) -> FlowForest:
        """
        Merge conversations into a forest.

        Args:
            conversations: Fully resolved conversations, never modified

        Returns:
            The finished forest, summarized if `summarize_multi_steps` is set

        Raises:
            MalformedStepError: if a step has no derivable signature
            LoopExplosionError: if a construction path exceeds the depth ceiling
        """
        conversations = list(conversations)
        # Signatures first: a malformed step fails before anything is built
        all_signatures = [conversation.signatures() for conversation in conversations]
        max_depth = self.options.max_depth or max(1, sum(len(s) for s in all_signatures))

        roots: List[_DraftNode] = []
        roots_by_signature: Dict[str, _DraftNode] = {}
        for convo_id, (conversation, signatures) in enumerate(zip(conversations, all_signatures)):
            if not signatures:
                logging.warning(f"Conversation '{conversation.name}' has no steps, skipping")
                continue
            root = roots_by_signature.get(signatures[0])
            if root is None:
                root = _DraftNode(signatures[0])
                roots.append(root)
                roots_by_signature[root.signature] = root
            self._insert(root, convo_id, conversation, signatures, max_depth)

        self._assign_hashes(roots)
        forest = FlowForest(
            roots=self._freeze(roots, conversations),
            options=self.options,
        )
        logging.debug(f"Built flow forest with {len(forest)} roots from {len(conversations)} conversations")

        if self.options.summarize_multi_steps:
            forest = summarize_forest(forest)
        return forest

    def _insert(self, root: _DraftNode, convo_id: int, conversation: Conversation, signatures: List[str], max_depth: int) -> None:
        """
        Walk one conversation down from its root, extending or branching nodes.

        `path` is the construction path from the root to the current node.
        """
        root.record(convo_id, 0)
        path = [root]

        for step_index in range(1, len(signatures)):
            signature = signatures[step_index]
            current = path[-1]

            if self.options.detect_loops:
                ancestor = self._find_ancestor(path, signatures, step_index)
                if ancestor is not None:
                    self._fold_loop(current, ancestor, signature, convo_id, step_index)
                    del path[ancestor.depth + 1:]
                    continue

            if len(path) >= max_depth:
                raise LoopExplosionError(conversation.name, step_index, len(path) + 1, max_depth)

            child = current.child(signature)
            if child is None:
                child = _DraftNode(signature, depth=current.depth + 1)
                current.add_child(child)
            child.record(convo_id, step_index)
            path.append(child)

    def _find_ancestor(self, path: List[_DraftNode], signatures: List[str], step_index: int) -> Optional[_DraftNode]:
        """
        Find the nearest node on the path the conversation re-enters.

        The step re-enters an ancestor only if the rest of the conversation
        replays the cycle: every remaining step within the cycle span repeats
        the path from the ancestor down. Its subtree would then equal the
        ancestor's, and so would its hash.
        """
        for ancestor in reversed(path):
            if ancestor.signature != signatures[step_index]:
                continue
            span = len(path) - ancestor.depth
            replay = signatures[step_index:step_index + span]
            if all(sig == path[ancestor.depth + k].signature for k, sig in enumerate(replay)):
                return ancestor
        return None

    def _fold_loop(self, current: _DraftNode, ancestor: _DraftNode, signature: str, convo_id: int, step_index: int) -> None:
        loop_node = current.loop_child(signature, ancestor.depth)
        if loop_node is None:
            loop_node = _DraftNode(signature, depth=current.depth + 1, folds_into=ancestor)
            current.add_child(loop_node)
            ancestor.loop_sources += 1
        loop_node.record(convo_id, step_index)
        ancestor.record(convo_id, step_index)
        logging.debug(f"Step {step_index} folds back into '{ancestor.signature}' at depth {ancestor.depth}")

    def _assign_hashes(self, roots: List[_DraftNode]) -> None:
        """Compute hashes bottom-up, children before parent."""
        for node in _post_order(roots, lambda n: n.children):
            loop_distance = None
            if node.folds_into is not None:
                loop_distance = node.depth - node.folds_into.depth
            node.hash = content_hash(node.signature, [child.hash for child in node.children], loop_distance)

    def _freeze(self, roots: List[_DraftNode], conversations: List[Conversation]) -> Tuple[FlowNode, ...]:
        frozen: Dict[int, FlowNode] = {}
        for node in _post_order(roots, lambda n: n.children):
            memberships = tuple(
                ConvoMembership(convo_id, conversations[convo_id], tuple(indices))
                for convo_id, indices in node.memberships.items()
            )
            frozen[id(node)] = FlowNode(
                signature=node.signature,
                hash=node.hash,
                memberships=memberships,
                children=tuple(frozen.pop(id(child)) for child in node.children),
                loop_ref=node.folds_into.hash if node.folds_into is not None else None,
                is_loop_target=node.loop_sources > 0,
                depth=node.depth,
            )
        return tuple(frozen[id(root)] for root in roots)


def summarize_forest(forest: FlowForest) -> FlowForest:
    """
    Collapse non-branching chains into single visual nodes.

    A node absorbs its only child when the child is neither a loop node nor a
    loop target and carries exactly the same conversations. The merged node
    keeps the hash of the chain head, so loop references stay valid.

    Args:
        forest: A finished forest, never modified

    Returns:
        A new, summarized forest
    """
    # Chains in pre-order: a chain's children start chains listed after it
    chains: List[List[FlowNode]] = []
    stack = list(reversed(forest.roots))
    while stack:
        chain = [stack.pop()]
        while len(chain[-1].children) == 1 and _can_merge(chain[-1], chain[-1].children[0]):
            chain.append(chain[-1].children[0])
        chains.append(chain)
        stack.extend(reversed(chain[-1].children))

    summarized: Dict[int, FlowNode] = {}
    for chain in reversed(chains):
        head = chain[0]
        children = tuple(summarized.pop(id(child)) for child in chain[-1].children)
        if len(chain) == 1:
            summarized[id(head)] = replace(head, children=children)
        else:
            summarized[id(head)] = replace(
                head,
                memberships=_merge_memberships(chain),
                children=children,
                steps=tuple(chain),
            )

    return FlowForest(
        roots=tuple(summarized[id(root)] for root in forest.roots),
        options=forest.options,
        summarized=True,
    )


def _can_merge(node: FlowNode, child: FlowNode) -> bool:
    if child.loop_ref is not None or child.is_loop_target:
        return False
    return {m.convo_id for m in node.memberships} == {m.convo_id for m in child.memberships}


def _merge_memberships(chain: List[FlowNode]) -> Tuple[ConvoMembership, ...]:
    merged: Dict[int, Tuple[Conversation, List[int]]] = {}
    for node in chain:
        for membership in node.memberships:
            entry = merged.setdefault(membership.convo_id, (membership.conversation, []))
            entry[1].extend(membership.step_indices)
    return tuple(
        ConvoMembership(convo_id, conversation, tuple(sorted(indices)))
        for convo_id, (conversation, indices) in merged.items()
    )


def build_flow_view(conversations: Sequence[Conversation], options: Union[FlowOptions, Dict[str, Any], None] = None, **overrides: Any) -> FlowForest:
    """
    Build the conversation flow view.

    Args:
        conversations: Fully resolved conversations
        options: FlowOptions, a dict of options or None for the defaults
                 (detect_loops=False, summarize_multi_steps=True)
        **overrides: Individual options, e.g. detect_loops=True

    Returns:
        A fresh FlowForest
    """
    return FlowTreeBuilder(options, **overrides).build(conversations)
