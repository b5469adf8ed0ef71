"""Continue/retry/abort decisions for failed segments."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional

from .errors import (
    AbortRequested,
    ErrorCategory,
    ErrorRecord,
    ErrorTracker,
    NonInteractiveAbort,
)

logger = logging.getLogger(__name__)

ANSWERS: Dict[str, str] = {
    "c": "continue",
    "continue": "continue",
    "r": "retry",
    "retry": "retry",
    "a": "abort",
    "abort": "abort",
}


class ErrorPolicy:
    """Shared by all workers of a run; every call is serialised."""

    def __init__(
        self,
        *,
        interactive: bool,
        prompt: Callable[[str], str] = input,
        tracker: Optional[ErrorTracker] = None,
    ) -> None:
        self.interactive = interactive
        self.prompt = prompt
        self.tracker = tracker or ErrorTracker()
        self.records: List[ErrorRecord] = []
        self._lock = threading.Lock()

    def record_success(self) -> None:
        with self._lock:
            self.tracker.reset_consecutive()

    def handle_error(
        self,
        category: ErrorCategory,
        message: str,
        *,
        segment_id: Optional[str] = None,
    ) -> str:
        """Record an error and return ``"continue"`` or ``"retry"``.

        Once a threshold is reached the user is asked what to do; without a
        user the run is stopped with :class:`NonInteractiveAbort`.
        """

        with self._lock:
            self.records.append(ErrorRecord(category, message, segment_id))
            logger.warning(message)
            if not self.tracker.register(category):
                return "continue"

            reason = self.tracker.describe_threshold()
            if not self.interactive:
                raise NonInteractiveAbort(f"{reason} Stopping the run.")
            return self._ask(reason)

    def _ask(self, reason: str) -> str:
        while True:
            answer = ANSWERS.get(
                self.prompt(f"{reason} Continue, retry or abort? [c/r/a] ").strip().lower()
            )
            if answer == "abort":
                raise AbortRequested("Abort requested by user.")
            if answer is not None:
                return answer
            print("Please answer c, r or a.")
