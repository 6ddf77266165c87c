"""
flow_registry.py - Load flow definitions from YAML files.

Every ``*.yaml`` / ``*.yml`` file in the flows directory holds one flow. Flows
are keyed by their ``id``; two files declaring the same id is an error.

Raw documents are checked against ``schemas/flow.schema.json`` before they
are parsed, so a typo in a field type is reported with its path instead of
surfacing later as a confusing KeyError.

Usage:
    from stepflow.config.flow_registry import FlowRegistry, get_flow, load_flow_file

    flow = get_flow("inventory-restock")
    flow = load_flow_file(Path("my-flow.yaml"))
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from jsonschema import Draft7Validator

from stepflow.runtime.types import Flow, flow_from_dict

from .runtime_config import get_flows_dir

logger = logging.getLogger(__name__)

_FLOW_SUFFIXES = (".yaml", ".yml")
_SCHEMA_PATH = Path(__file__).parent / "schemas" / "flow.schema.json"
_flow_validator: Optional[Draft7Validator] = None


def _get_flow_validator() -> Draft7Validator:
    """Load flow.schema.json once and build its validator."""
    global _flow_validator
    if _flow_validator is None:
        with open(_SCHEMA_PATH, "r", encoding="utf-8") as f:
            _flow_validator = Draft7Validator(json.load(f))
    return _flow_validator


def flow_schema_errors(data: Any) -> List[str]:
    """Check a raw flow document against the flow JSON schema.

    Returns:
        "path: message" strings, sorted by path. Empty when the document
        conforms.
    """
    errors = []
    for error in _get_flow_validator().iter_errors(data):
        path = ".".join(str(p) for p in error.absolute_path) or "root"
        errors.append(f"{path}: {error.message}")
    return sorted(errors)


def load_flow_file(path: Path) -> Flow:
    """Parse one flow definition file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not a mapping or does not match the schema.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Flow file {path} must contain a mapping, got {type(data).__name__}")
    if not data.get("id"):
        data["id"] = path.stem
    errors = flow_schema_errors(data)
    if errors:
        raise ValueError(f"Flow file {path} does not match the flow schema: " + "; ".join(errors))
    return flow_from_dict(data)


class FlowRegistry:
    """Flow definitions loaded from a directory, keyed by flow id."""

    _instance: Optional["FlowRegistry"] = None

    def __init__(self, flows_dir: Optional[Path] = None):
        self._flows_dir = Path(flows_dir) if flows_dir else get_flows_dir()
        self._flows: Dict[str, Flow] = {}
        self._sources: Dict[str, Path] = {}
        self._load()

    def _load(self) -> None:
        if not self._flows_dir.is_dir():
            logger.warning("Flows directory %s does not exist; registry is empty", self._flows_dir)
            return
        for path in sorted(self._flows_dir.iterdir()):
            if path.suffix not in _FLOW_SUFFIXES:
                continue
            flow = load_flow_file(path)
            if flow.id in self._flows:
                raise ValueError(
                    f"Flow id '{flow.id}' defined in both {self._sources[flow.id]} and {path}"
                )
            self._flows[flow.id] = flow
            self._sources[flow.id] = path
        logger.debug("Loaded %d flow(s) from %s", len(self._flows), self._flows_dir)

    @classmethod
    def get_instance(cls) -> "FlowRegistry":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset singleton (for testing)."""
        cls._instance = None

    @property
    def flows_dir(self) -> Path:
        return self._flows_dir

    def flow_ids(self) -> List[str]:
        return sorted(self._flows)

    def get_flow(self, flow_id: str) -> Optional[Flow]:
        return self._flows.get(flow_id)

    def source_of(self, flow_id: str) -> Optional[Path]:
        return self._sources.get(flow_id)

    def register(self, flow: Flow) -> None:
        """Add or replace a flow in memory (not written to disk)."""
        self._flows[flow.id] = flow


def get_flow(flow_id: str) -> Optional[Flow]:
    return FlowRegistry.get_instance().get_flow(flow_id)


def get_flow_ids() -> List[str]:
    return FlowRegistry.get_instance().flow_ids()
