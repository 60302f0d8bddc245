from __future__ import annotations

from .clock import FakeClock, SystemClock
from .hook import GovernanceHook, GovernanceHookResult
from .models import Decision, ValidationResult, Workstream
from .policy import PolicyEngine
from .result_hash import generate_result_hash

__all__ = [
    "__version__",
    "Decision",
    "FakeClock",
    "GovernanceHook",
    "GovernanceHookResult",
    "PolicyEngine",
    "SystemClock",
    "ValidationResult",
    "Workstream",
    "generate_result_hash",
]
__version__ = "0.1.0"
