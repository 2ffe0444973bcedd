from __future__ import annotations

import logging
import time
from typing import Callable, Collection

from portal_export.config import RetryPolicy

LOGGER = logging.getLogger(__name__)


class SessionGate:
    """Waits until the portal's authentication cookies are visible on the active page."""

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._policy = policy
        self._clock = clock
        self._sleep = sleep
        self.last_attempts = 0

    def wait_for_session(self, observe_cookies: Callable[[], set[str]], required: Collection[str]) -> bool:
        """Return True once one poll sees every required cookie name.

        Stops after ``max_attempts`` polls or ``timeout`` seconds, whichever comes first.
        """
        required_names = frozenset(required)
        missing = required_names
        started = self._clock()
        attempt = 0
        self.last_attempts = 0
        while attempt < self._policy.max_attempts and self._clock() - started <= self._policy.timeout:
            attempt += 1
            self.last_attempts = attempt
            missing = required_names - observe_cookies()
            if not missing:
                LOGGER.info("Session established after %s poll(s)", attempt)
                return True
            LOGGER.debug("Poll %s: waiting for cookies %s", attempt, ", ".join(sorted(missing)))
            if attempt < self._policy.max_attempts:
                self._sleep(self._policy.interval)
        LOGGER.warning(
            "Session cookies still missing after %s poll(s) in %.1fs: %s",
            attempt,
            self._clock() - started,
            ", ".join(sorted(missing)),
        )
        return False
