"""Error codes for CLI exit status.

The release commands map every failure to one of these codes so scripts
wrapping ``mrel`` can tell an operator mistake from a failed release.
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands.

    These values are used as process exit codes and should remain stable:
    - 0: Success
    - 1: User error (bad input, wrong branch, dirty tree)
    - 2: Environment error (bad config, missing remote)
    - 3: Release error (a package pipeline failed and was rolled back)
    - 4: Network error (release host unreachable or rejected a request)
    - 5: I/O error (manifest or changelog could not be read or written)
    """

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    RELEASE_ERROR = 3
    NETWORK_ERROR = 4
    IO_ERROR = 5

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK
