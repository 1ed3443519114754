import hashlib
import json
import logging
from typing import List, Optional, Sequence

from .convo import Conversation


def content_hash(signature: str, child_hashes: Sequence[str], loop_distance: Optional[int] = None) -> str:
    """
    Content address of a flow node.

    The digest covers the node signature, the ordered child digests and, for
    loop nodes, how many levels up the loop folds back. It never depends on
    object identity, so identical structures hash identically across runs.
    """
    payload = json.dumps([signature, list(child_hashes), loop_distance], ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def load_conversations(filepath: str) -> List[Conversation]:
    """
    Load already parsed conversations from a JSON file.

    The file holds either a list of conversation dicts or an object with a
    `convos` list.
    """
    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logging.error(f"Failed to parse conversations from {filepath}: {e}")
        raise

    if isinstance(data, dict):
        data = data.get("convos", [])
    if not isinstance(data, list):
        raise ValueError(f"{filepath}: expected a list of conversations")

    conversations = [Conversation.from_dict(item, source=filepath) for item in data]
    logging.debug(f"Loaded {len(conversations)} conversations from {filepath}")
    return conversations
