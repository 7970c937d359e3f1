from __future__ import annotations

"""Line-based console prompts."""

import sys
from typing import Any, Callable, Sequence, TextIO

from .collaborators import Choice, InteractivePrompter, TextValidator
from .errors import NonInteractiveModeError, ValidationError


class ConsolePrompter(InteractivePrompter):
    """Prompt on a text stream and read answers line by line.

    Invalid answers are re-prompted up to `max_attempts` times, after which
    `ValidationError` is raised.
    """

    def __init__(
        self,
        *,
        non_interactive: bool = False,
        input_func: Callable[[str], str] | None = None,
        output: TextIO | None = None,
        max_attempts: int = 5,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self.non_interactive = non_interactive
        self.input_func = input_func if input_func is not None else input
        self.output = output
        self.max_attempts = max_attempts

    def _ensure_interactive(self, message: str) -> None:
        if self.non_interactive:
            raise NonInteractiveModeError(
                f"cannot prompt in non-interactive mode: {message}"
            )

    def _write(self, text: str) -> None:
        stream = self.output if self.output is not None else sys.stderr
        stream.write(text)
        stream.flush()

    def _ask(self, message: str) -> str:
        try:
            return self.input_func(message).strip()
        except EOFError as exc:
            raise NonInteractiveModeError("input stream closed while prompting") from exc

    def select_one(self, message: str, choices: Sequence[Choice]) -> Any:
        self._ensure_interactive(message)
        if not choices:
            raise ValueError("choices cannot be empty")

        self._write(message + "\n")
        for index, choice in enumerate(choices, start=1):
            lines = choice.title.splitlines() or [""]
            suffix = f" ({choice.warning})" if choice.warning else ""
            self._write(f"  {index}) {lines[0]}{suffix}\n")
            for line in lines[1:]:
                self._write(f"     {line.strip()}\n")

        for _ in range(self.max_attempts):
            answer = self._ask(f"Select 1-{len(choices)}: ")
            if answer.isdigit() and 1 <= int(answer) <= len(choices):
                return choices[int(answer) - 1].value
            self._write(f"Please enter a number between 1 and {len(choices)}.\n")
        raise ValidationError(f"no valid selection after {self.max_attempts} attempts")

    def input_text(
        self,
        message: str,
        validator: TextValidator,
        initial: str | None = None,
    ) -> str:
        self._ensure_interactive(message)
        prompt = f"{message} [{initial}] " if initial else f"{message} "
        for _ in range(self.max_attempts):
            answer = self._ask(prompt)
            if not answer and initial:
                answer = initial
            problem = validator(answer)
            if problem is None:
                return answer
            self._write(problem + "\n")
        raise ValidationError(f"no valid answer after {self.max_attempts} attempts")

    def confirm(self, message: str) -> bool:
        self._ensure_interactive(message)
        for _ in range(self.max_attempts):
            answer = self._ask(f"{message} (y/n) ").lower()
            if answer in {"y", "yes"}:
                return True
            if answer in {"n", "no"}:
                return False
            self._write("Please answer y or n.\n")
        raise ValidationError(f"no valid answer after {self.max_attempts} attempts")
