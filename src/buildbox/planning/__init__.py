"""
Plan generation, validation, and execution.
"""

from .errors import ExecutionError, InputError, PlanFormatError, PlanningError, ServiceError
from .executor import ActionLevel, ActionRecord, ExecutionResult, PlanExecutor, execute_plan
from .generator import PlanGenerator
from .parsing import decode_plan_text, plan_from_payload, strip_code_fences
from .schemas import FileAction, FileChange, Plan

__all__ = [
    "ActionLevel",
    "ActionRecord",
    "ExecutionError",
    "ExecutionResult",
    "FileAction",
    "FileChange",
    "InputError",
    "Plan",
    "PlanExecutor",
    "PlanFormatError",
    "PlanGenerator",
    "PlanningError",
    "ServiceError",
    "decode_plan_text",
    "execute_plan",
    "plan_from_payload",
    "strip_code_fences",
]
