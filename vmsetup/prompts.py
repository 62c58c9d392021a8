"""Operator confirmation providers."""
import abc
from typing import Iterable

import typer


class ConfirmationProvider(abc.ABC):
    """Source of operator answers for the blocking checkpoints of a run."""

    @abc.abstractmethod
    def pause(self, message: str) -> None:
        """Block until the operator acknowledges ``message``."""

    @abc.abstractmethod
    def ask(self, question: str) -> str:
        """Return the operator's raw answer to ``question``."""


class ConsolePrompt(ConfirmationProvider):
    """Reads answers from the controlling terminal."""

    def pause(self, message: str) -> None:
        typer.prompt(message, default="", show_default=False, prompt_suffix=" ")

    def ask(self, question: str) -> str:
        return typer.prompt(question, default="", show_default=False, prompt_suffix=" ")


class ScriptedPrompt(ConfirmationProvider):
    """Replays a fixed list of answers; used to drive checkpoints in tests.

    Running out of answers raises ``ScriptExhausted`` so a checkpoint that
    keeps asking can be told apart from one that returned.
    """

    class ScriptExhausted(RuntimeError):
        pass

    def __init__(self, answers: Iterable[str] = ()):
        self._answers = list(answers)
        self.questions = []
        self.pauses = []

    def pause(self, message: str) -> None:
        self.pauses.append(message)

    def ask(self, question: str) -> str:
        self.questions.append(question)
        if not self._answers:
            raise self.ScriptExhausted(question)
        return self._answers.pop(0)
