"""Named operations for tool-dispatch callers."""

from metasynth.tools.registry import Operation, OperationRegistry, dispatch, get_registry

__all__ = ["Operation", "OperationRegistry", "dispatch", "get_registry"]
