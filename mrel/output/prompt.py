"""Interactive prompt abstraction.

Credentials, one-time passwords and the changelog review pause are the only
points where a release waits on the operator. They all go through
``PromptProtocol`` so tests can script the answers.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

__all__ = ["PromptProtocol", "ScriptedPrompt", "TyperPrompt"]


class PromptProtocol(Protocol):
    def ask(self, message: str, *, secret: bool = False) -> str:
        """Ask the operator for a line of input. ``secret`` hides the echo."""
        ...


class TyperPrompt:
    """Production prompt backed by ``typer.prompt``."""

    def ask(self, message: str, *, secret: bool = False) -> str:
        import typer

        answer: str = typer.prompt(message, default="", hide_input=secret, show_default=False)
        return answer.strip()


@dataclass
class ScriptedPrompt:
    """Prompt returning pre-recorded answers, for tests.

    Raises AssertionError when asked more questions than were scripted.
    """

    answers: list[str] = field(default_factory=list)
    asked: list[str] = field(default_factory=list)

    @classmethod
    def of(cls, answers: Iterable[str]) -> ScriptedPrompt:
        return cls(answers=list(answers))

    def ask(self, message: str, *, secret: bool = False) -> str:
        del secret
        self.asked.append(message)
        if not self.answers:
            raise AssertionError(f"unexpected prompt: {message}")
        return self.answers.pop(0)
