"""Exception types shared by the optimisation pipeline."""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class EngineError(Exception):
    """Base class for every error raised by the itinerary engine."""


class InputError(EngineError):
    """Malformed or inconsistent request data. Surfaced to callers as HTTP 422."""

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_detail(self) -> List[Dict[str, Any]]:
        if self.details:
            return list(self.details)
        return [{"msg": self.message, "type": "input_error"}]


class InfeasibleConstraintError(EngineError):
    """No subset satisfies the fairness threshold; the selector degrades to greedy."""


class SearchBudgetExceeded(EngineError):
    """The genetic search ran past its wall-clock budget."""


class ExternalLookupFailure(EngineError):
    """The airport directory was unreachable, slow, or misconfigured."""
