"""
Configuration for building conversation flow views.
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

from .errors import InvalidOptionsError

# Load environment variables from .env file
load_dotenv()

ENV_PREFIX = "CONVOFLOW_"

_CAMEL_CASE_KEYS = {
    "detectLoops": "detect_loops",
    "summarizeMultiSteps": "summarize_multi_steps",
    "maxDepth": "max_depth",
}

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


@dataclass(frozen=True)
class FlowOptions:
    """
    Options for a single build of the flow forest.

    Attributes:
        detect_loops: Fold steps that re-enter an ancestor into a loop reference
        summarize_multi_steps: Collapse non-branching chains into one node
        max_depth: Ceiling for the construction path length. None means the
                   total number of steps across all input conversations.
    """
    detect_loops: bool = False
    summarize_multi_steps: bool = True
    max_depth: Optional[int] = None

    def __post_init__(self):
        for name in ("detect_loops", "summarize_multi_steps"):
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise InvalidOptionsError(f"{name} must be a boolean, got {value!r}")
        if self.max_depth is not None:
            if isinstance(self.max_depth, bool) or not isinstance(self.max_depth, int) or self.max_depth < 1:
                raise InvalidOptionsError(f"max_depth must be a positive integer, got {self.max_depth!r}")

    @classmethod
    def coerce(cls, options: Union['FlowOptions', Dict[str, Any], None] = None, **overrides: Any) -> 'FlowOptions':
        """
        Build a FlowOptions record from an instance, a dict or None.

        Dict keys may be snake_case or camelCase. Keyword overrides win over
        values in `options`.
        """
        if options is None:
            base = cls()
        elif isinstance(options, FlowOptions):
            base = options
        elif isinstance(options, dict):
            base = cls(**cls._normalize_keys(options))
        else:
            raise InvalidOptionsError(f"Unsupported options type: {type(options).__name__}")

        if overrides:
            base = replace(base, **cls._normalize_keys(overrides))
        return base

    @classmethod
    def from_env(cls) -> 'FlowOptions':
        """Read options from CONVOFLOW_* environment variables."""
        values: Dict[str, Any] = {}
        for name in ("detect_loops", "summarize_multi_steps"):
            raw = os.getenv(ENV_PREFIX + name.upper())
            if raw is not None:
                values[name] = _parse_bool(name, raw)
        raw_depth = os.getenv(ENV_PREFIX + "MAX_DEPTH")
        if raw_depth:
            try:
                values["max_depth"] = int(raw_depth)
            except ValueError:
                raise InvalidOptionsError(f"max_depth must be an integer, got {raw_depth!r}") from None
        return cls(**values)

    @classmethod
    def _normalize_keys(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        known = {f.name for f in fields(cls)}
        result = {}
        for key, value in values.items():
            name = _CAMEL_CASE_KEYS.get(key, key)
            if name not in known:
                raise InvalidOptionsError(f"Unknown option: {key}")
            result[name] = value
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detect_loops": self.detect_loops,
            "summarize_multi_steps": self.summarize_multi_steps,
            "max_depth": self.max_depth,
        }


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise InvalidOptionsError(f"{name} must be a boolean, got {raw!r}")
