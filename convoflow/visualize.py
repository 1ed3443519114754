"""
Visualization utilities for conversation flow forests.

This module renders a FlowForest as a Graphviz DOT graph, a text tree, a
statistics summary and JSON exports. All renderers are read-only.
"""

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .config import FlowOptions
from .convo import Conversation
from .errors import DotRenderError
from .flowtree import FlowForest, FlowNode, build_flow_view


def escape_dot_label(text: str, node_id: str) -> str:
    """
    Escape a label for a double-quoted DOT string.

    Line breaks become `\\n`; other control characters cannot be carried and
    raise DotRenderError.
    """
    text = text.replace("\r\n", "\n")
    escaped = []
    for char in text:
        if char == "\\":
            escaped.append("\\\\")
        elif char == '"':
            escaped.append('\\"')
        elif char == "\n":
            escaped.append("\\n")
        elif char == "\t":
            escaped.append(char)
        elif ord(char) < 0x20 or ord(char) == 0x7f:
            raise DotRenderError(node_id, text, char)
        else:
            escaped.append(char)
    return "".join(escaped)


def forest_to_dot(forest: FlowForest, graph_name: str = "convoflow") -> str:
    """
    Render a forest as a Graphviz DOT digraph.

    Every node gets a `nX [label="..."];` statement and every parent/child
    relation an edge. A loop node additionally gets a dashed back-edge to the
    nearest ancestor whose hash equals its `loop_ref`.

    Args:
        forest: The forest to render
        graph_name: Name of the digraph

    Returns:
        The DOT text
    """
    lines = [f'digraph "{escape_dot_label(graph_name, "graph")}" {{', "  node [shape=box];"]
    # node id -> (hash, parent id), for resolving loop references upwards
    parents: Dict[str, Tuple[str, Optional[str]]] = {}
    stack: List[Tuple[FlowNode, Optional[str]]] = [(root, None) for root in reversed(forest.roots)]
    counter = 0

    while stack:
        node, parent_id = stack.pop()
        node_id = f"n{counter}"
        counter += 1
        parents[node_id] = (node.hash, parent_id)
        label = "\\n".join(escape_dot_label(text, node_id) for text in node.labels)
        lines.append(f'  {node_id} [label="{label}"];')
        if parent_id is not None:
            lines.append(f"  {parent_id} -> {node_id};")

        if node.loop_ref is not None:
            target_id = parent_id
            while target_id is not None and parents[target_id][0] != node.loop_ref:
                target_id = parents[target_id][1]
            if target_id is None:
                raise DotRenderError(node_id, node.signature, reason=f"loop reference {node.loop_ref} is not an ancestor")
            lines.append(f'  {node_id} -> {target_id} [style=dashed, constraint=false, label="loop"];')
            continue

        stack.extend((child, node_id) for child in reversed(node.children))

    lines.append("}")
    return "\n".join(lines) + "\n"


def render_flow_dot(conversations: Sequence[Conversation], options: Union[FlowOptions, Dict[str, Any], None] = None, **overrides: Any) -> str:
    """
    Build the flow view of the conversations and render it as DOT text.

    Takes the same options as build_flow_view.
    """
    return forest_to_dot(build_flow_view(conversations, options, **overrides))


def export_forest_to_dot(forest: FlowForest, filepath: str) -> None:
    """
    Export the forest to a DOT file.

    Args:
        forest: The forest to export
        filepath: Path to save the DOT file
    """
    dot = forest_to_dot(forest)
    with open(filepath, 'w', encoding='utf-8') as f:
        f.write(dot)

    print(f"Flow graph exported to {filepath}")


def _format_memberships(node: FlowNode) -> str:
    return "; ".join(
        f"{m.name}:{','.join(str(i) for i in m.step_indices)}" for m in node.memberships
    )


def visualize_forest_ascii(forest: FlowForest, max_width: int = 100) -> str:
    """
    Create an ASCII art visualization of the forest.

    Args:
        forest: The forest to visualize
        max_width: Maximum width of a label before it is truncated

    Returns:
        String containing ASCII art representation
    """
    lines = []

    def entries(nodes, prefix: str):
        return [(node, prefix, i == len(nodes) - 1) for i, node in reversed(list(enumerate(nodes)))]

    stack = entries(forest.roots, "")
    while stack:
        node, prefix, is_last = stack.pop()
        max_label_len = max(10, max_width - len(prefix) - 10)
        label = " | ".join(node.labels).replace("\n", " ")
        if len(label) > max_label_len:
            label = label[:max_label_len - 3] + "..."

        connector = "└─ " if is_last else "├─ "
        loop = f" ↺ {node.loop_ref[:8]}" if node.loop_ref else ""
        lines.append(f"{prefix}{connector}{label} [{_format_memberships(node)}]{loop}")

        if node.children:
            stack.extend(entries(node.children, prefix + ("   " if is_last else "│  ")))
    return "\n".join(lines)


def export_forest_statistics(forest: FlowForest) -> Dict[str, Any]:
    """
    Generate statistics about the forest structure.

    Args:
        forest: The forest to analyze

    Returns:
        Dictionary containing various statistics
    """
    stats = {
        "roots": len(forest),
        "total_nodes": 0,
        "leaf_nodes": 0,
        "loop_nodes": 0,
        "branch_nodes": 0,
        "max_depth": 0,
        "conversations": 0,
    }
    convo_ids = set()

    stack = [(root, 0) for root in forest.roots]
    while stack:
        node, depth = stack.pop()
        stats["total_nodes"] += 1
        stats["max_depth"] = max(stats["max_depth"], depth)
        convo_ids.update(m.convo_id for m in node.memberships)

        if node.loop_ref is not None:
            stats["loop_nodes"] += 1
        elif node.is_leaf():
            stats["leaf_nodes"] += 1
        if len(node.children) > 1:
            stats["branch_nodes"] += 1

        stack.extend((child, depth + 1) for child in node.children)

    stats["conversations"] = len(convo_ids)
    return stats


def print_statistics(forest: FlowForest) -> None:
    """
    Print comprehensive statistics about the forest.

    Args:
        forest: The forest to analyze
    """
    stats = export_forest_statistics(forest)

    print("=" * 80)
    print("FLOW STATISTICS")
    print("=" * 80)
    print(f"Conversations:            {stats['conversations']}")
    print(f"Root nodes:               {stats['roots']}")
    print(f"Total nodes:              {stats['total_nodes']}")
    print(f"Leaf nodes:               {stats['leaf_nodes']}")
    print(f"Loop nodes:               {stats['loop_nodes']}")
    print(f"Branching nodes:          {stats['branch_nodes']}")
    print(f"Maximum depth:            {stats['max_depth']}")
    print("=" * 80)


def collect_coverage(forest: FlowForest) -> List[Dict[str, Any]]:
    """
    List which node every conversation step maps onto.

    Returns:
        One entry per (conversation, step index, node), sorted by
        conversation and step index
    """
    coverage = []
    for node in forest.iter_nodes():
        for membership in node.memberships:
            for step_index in membership.step_indices:
                coverage.append({
                    "convo_id": membership.convo_id,
                    "convo": membership.name,
                    "step_index": step_index,
                    "node": node.signature,
                    "hash": node.hash,
                    "loop": node.loop_ref is not None,
                })

    coverage.sort(key=lambda x: (x["convo_id"], x["step_index"], x["loop"]))
    return coverage


def export_coverage_report(forest: FlowForest, filepath: str) -> None:
    """
    Export a coverage report showing which node each conversation step maps onto.

    Args:
        forest: The forest to analyze
        filepath: Path to save the report
    """
    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(collect_coverage(forest), f, indent=2, ensure_ascii=False)

    print(f"Coverage report exported to {filepath}")


def main(argv: Optional[List[str]] = None):
    """Command line entry point: render conversations from a JSON file."""
    import sys

    from .utils import load_conversations

    args = sys.argv[1:] if argv is None else argv
    if not args:
        print("Usage: python -m convoflow.visualize <convos_json_file> [command]")
        print("\nCommands:")
        print("  dot        - Print the Graphviz DOT graph (default)")
        print("  ascii      - Show ASCII art tree")
        print("  stats      - Show statistics")
        print("  json       - Print the forest as JSON")
        print("\nOptions are read from CONVOFLOW_DETECT_LOOPS, CONVOFLOW_SUMMARIZE_MULTI_STEPS")
        print("and CONVOFLOW_MAX_DEPTH (a .env file is honoured).")
        return 1

    convo_file = args[0]
    command = args[1] if len(args) > 1 else "dot"

    conversations = load_conversations(convo_file)
    forest = build_flow_view(conversations, FlowOptions.from_env())

    if command == "dot":
        print(forest_to_dot(forest), end="")
    elif command == "ascii":
        print(visualize_forest_ascii(forest))
    elif command == "stats":
        print_statistics(forest)
    elif command == "json":
        print(json.dumps(forest.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(f"Unknown command: {command}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
