"""Result type for explicit error handling.

Every fallible release step returns either ``Ok(value)`` or ``Err(error)``
instead of raising. Callers branch with ``isinstance`` or structural pattern
matching:

    match repo.last_tag(match="hint-v*"):
        case Ok(tag):
            ctx.package.last_tag = tag
        case Err(error):
            return Err(ReleaseError.from_git(error))
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class Ok[T]:
    value: T

    def unwrap(self) -> T:
        return self.value

    def map[U](self, f: Callable[[T], U]) -> Ok[U]:
        return Ok(f(self.value))

    def map_err[F](self, f: Callable[[Any], F]) -> Ok[T]:
        del f
        return self


@dataclass(frozen=True, slots=True)
class Err[E]:
    error: E

    def unwrap(self) -> None:
        """Tests use this to fail loudly on an unexpected Err."""
        raise ValueError(f"called unwrap on Err: {self.error}")

    def map[U](self, f: Callable[[Any], U]) -> Err[E]:
        del f
        return self

    def map_err[F](self, f: Callable[[E], F]) -> Err[F]:
        """Normalize the carried error, e.g. a GitError into a ReleaseError."""
        return Err(f(self.error))


type Result[T, E] = Ok[T] | Err[E]
