"""
convoflow - Conversation Flow Graph Builder

Merges scripted chatbot test conversations sharing a common prefix into a
forest of flow nodes, folds loops into back-references and renders the result
as a Graphviz graph.
"""

from .config import FlowOptions
from .convo import (
    Conversation,
    ConversationStep,
    step_signature
)
from .errors import (
    ConvoFlowError,
    DotRenderError,
    InvalidOptionsError,
    LoopExplosionError,
    MalformedStepError
)
from .flowtree import (
    ConvoMembership,
    FlowForest,
    FlowNode,
    FlowTreeBuilder,
    build_flow_view,
    summarize_forest
)
from .utils import content_hash, load_conversations
from .visualize import forest_to_dot, render_flow_dot

__version__ = "0.1.0"
__all__ = [
    "FlowOptions",
    "Conversation",
    "ConversationStep",
    "step_signature",
    "ConvoFlowError",
    "DotRenderError",
    "InvalidOptionsError",
    "LoopExplosionError",
    "MalformedStepError",
    "ConvoMembership",
    "FlowForest",
    "FlowNode",
    "FlowTreeBuilder",
    "build_flow_view",
    "summarize_forest",
    "content_hash",
    "load_conversations",
    "forest_to_dot",
    "render_flow_dot"
]
