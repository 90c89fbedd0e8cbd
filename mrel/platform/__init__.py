"""Platform abstraction layer: processes, files and HTTP."""

from .process import (
    CommandError,
    CommandResult,
    FailedAttempt,
    RetryExhausted,
    run,
    run_with_retry,
)

__all__ = [
    "CommandError",
    "CommandResult",
    "FailedAttempt",
    "RetryExhausted",
    "run",
    "run_with_retry",
]
