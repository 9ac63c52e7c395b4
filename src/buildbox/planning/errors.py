"""Error taxonomy for plan generation and execution."""

from __future__ import annotations


class PlanningError(RuntimeError):
    """Base error raised by the planning workflow."""


class InputError(PlanningError):
    """Raised when a goal is empty after trimming; no request is made."""


class PlanFormatError(PlanningError):
    """Raised when completion text cannot be decoded into a usable plan."""


class ServiceError(PlanningError):
    """Raised when the completion or push service fails upstream."""


class ExecutionError(PlanningError):
    """Raised when plan execution hits an unexpected internal fault."""


__all__ = [
    "ExecutionError",
    "InputError",
    "PlanFormatError",
    "PlanningError",
    "ServiceError",
]
