"""
Compose wait - Polls a compose until it finishes, fails or the wait times out.
"""

from __future__ import annotations
import logging
import time
from typing import List, Optional, Sequence, Tuple

from ..domain.interfaces.backend import Clock, ComposeStatusSource, Sleeper
from ..domain.models.compose import ComposeStatus, WaitOutcome, WaitState
from ..infrastructure.transport.errors import ComposerError


class ComposeWaiter:
    """Wait for a compose on whichever backend knows about it.

    ``sources`` are tried in order for the first status fetch. Any error from a
    source other than the last one means "not this backend's compose" and the next
    one is tried. Once a source answers, every later fetch goes to it.
    """

    def __init__(
        self,
        sources: Sequence[ComposeStatusSource],
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        if not sources:
            raise ValueError("at least one compose status source is required")
        self._sources: List[ComposeStatusSource] = list(sources)
        self._clock = clock
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)

    def wait(self, compose_id: str, timeout: float, interval: float) -> WaitOutcome:
        """Block until the compose is terminal or ``timeout`` seconds have passed.

        The status is checked right away, then after every ``interval`` seconds.
        The deadline is only checked after sleeping so a terminal status is always
        reported as soon as it is seen.
        """
        if interval <= 0:
            raise ValueError(f"Cannot wait, check interval ({interval}s) must be > 0")
        if interval >= timeout:
            raise ValueError(f"Cannot wait, check interval ({interval}s) must be < timeout ({timeout}s)")

        deadline = self._clock() + timeout
        source, status, fetches, outcome = self._resolve(compose_id)
        if outcome is not None:
            return outcome

        while True:
            if status.terminal:
                self._logger.debug(f"compose {compose_id} is {status.status} after {fetches} fetches")
                return WaitOutcome(WaitState.TERMINAL, status=status, fetches=fetches)

            self._sleep(interval)
            if self._clock() >= deadline:
                self._logger.debug(f"compose {compose_id} wait timed out after {fetches} fetches")
                return WaitOutcome(WaitState.ABORTED, status=status, fetches=fetches)

            fetches += 1
            try:
                new_status, resp = source.compose_status(compose_id)
            except ComposerError as e:
                return WaitOutcome(WaitState.ERROR, status=status, error=e, fetches=fetches)
            if resp is not None or new_status is None:
                return WaitOutcome(WaitState.ERROR, status=status, api_response=resp, fetches=fetches)
            status = new_status

    def _resolve(
        self, compose_id: str
    ) -> Tuple[Optional[ComposeStatusSource], Optional[ComposeStatus], int, Optional[WaitOutcome]]:
        """First status fetch, trying each source until one knows the compose."""
        fetches = 0
        last = len(self._sources) - 1
        for i, source in enumerate(self._sources):
            fetches += 1
            try:
                status, resp = source.compose_status(compose_id)
            except ComposerError as e:
                if i < last:
                    self._logger.debug(f"{source.backend.value}: {e}, trying the next backend")
                    continue
                return None, None, fetches, WaitOutcome(WaitState.ERROR, error=e, fetches=fetches)
            if resp is None and status is not None:
                return source, status, fetches, None
            if i < last:
                self._logger.debug(f"{source.backend.value}: {resp}, trying the next backend")
                continue
            return None, None, fetches, WaitOutcome(WaitState.ERROR, api_response=resp, fetches=fetches)
        raise AssertionError("unreachable, the last source always returns")
