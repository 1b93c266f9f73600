"""Natural-language layer: intent resolution, action execution, rendering."""

from mnemo.orchestrator.orchestrator import Orchestrator, TurnResult

__all__ = ["Orchestrator", "TurnResult"]
