from __future__ import annotations

import getpass
import logging
import sys
from typing import Callable, Optional, Sequence, Tuple

from .errors import Cancelled, ValidationError

logger = logging.getLogger(__name__)

QUIT_WORDS = {"q", "quit"}
HELP_WORDS = {"?", "help"}


class Prompter:
    """Terminal prompts.

    When not interactive every prompt returns its default (or the supplied
    override) without reading input, so automated runs never block.
    """

    def __init__(
        self,
        *,
        interactive: bool,
        input_fn: Callable[[str], str] = input,
        secret_fn: Callable[[str], str] = getpass.getpass,
        out=None,
    ) -> None:
        self.interactive = interactive
        self._input = input_fn
        self._secret = secret_fn
        self._out = out

    def say(self, text: str = "") -> None:
        print(text, file=self._out or sys.stderr)

    def text(self, label: str, default: str = "", *, override: str = "") -> str:
        if override:
            return override
        if not self.interactive:
            return default
        suffix = f" [{default}]" if default else ""
        value = self._input(f"{label}{suffix}: ").strip()
        return value or default

    def yes_no(self, label: str, default: bool, *, override: Optional[bool] = None) -> bool:
        if override is not None:
            return override
        if not self.interactive:
            return default
        suffix = "(Y/n)" if default else "(y/N)"
        value = self._input(f"{label} {suffix}: ").strip().lower()
        if not value:
            return default
        return value in {"y", "yes"}

    def choice(
        self,
        label: str,
        options: Sequence[Tuple[str, str]],
        default: str,
        *,
        title: str = "",
    ) -> str:
        """Pick one of ``options`` (key, description). 'q' raises :class:`Cancelled`."""

        keys = [k for k, _ in options]
        if not self.interactive:
            if default in keys:
                return default
            raise ValidationError(
                f"Non-interactive mode cannot select default '{default}' for {label} (options: {' '.join(keys)})"
            )

        def _menu() -> None:
            if title:
                self.say(title)
            for key, desc in options:
                self.say(f"  {key}) {desc}")
            self.say("")
            self.say("Tip: type q to cancel.")
            self.say("")

        _menu()
        while True:
            value = self._input(f"{label} [{default}]: ").strip() or default
            if value.lower() in QUIT_WORDS:
                logger.info("Cancelled at '%s'", label)
                raise Cancelled(label)
            if value.lower() in HELP_WORDS:
                _menu()
                continue
            if value in keys:
                return value
            self.say(f"Invalid choice: '{value}'. Please enter one of: {' '.join(keys)}")

    def secret(self, label: str) -> str:
        if not self.interactive:
            raise ValidationError(f"Cannot read hidden input for '{label}' without a terminal.")
        value = self._secret(f"{label} (input hidden; paste is ok): ")
        if value:
            self.say(f"captured ({len(value)} chars)")
        else:
            self.say("captured empty value")
        return value
