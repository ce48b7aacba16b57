from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from application.scheduling import Scheduler, TimerHandle
from domain.repositories import SettingsRepository, StorageError


logger = logging.getLogger(__name__)

MULTIPLIER_KEY = "multiplier"
# Epoch milliseconds. "0" means nothing to keep (revert to 1 on the next
# check); NEVER_EXPIRES keeps the stored value across restarts.
EXPIRES_AT_KEY = "multiplier_expires_at"
NEVER_EXPIRES = "never"
ANNOUNCE_CHANNEL_KEY = "multiplier_announce_channel_id"

EXPIRY_ANNOUNCEMENT = "@everyone Vouch multiplier has ended. Back to 1x."

Announcer = Callable[[str, str], None]


@dataclass
class MultiplierStatus:
    value: int
    expires_at: Optional[float] = None  # epoch seconds

    def remaining(self, now: float) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - now)


class MultiplierManager:
    """
    Owns the process-wide vouch multiplier and its optional expiry.

    The value and expiry live in settings so they survive restarts; the
    reversion timer is in memory only, so `schedule_reversion_if_needed`
    must be called on start-up to rebuild it. At most one reversion timer
    is pending at any time.
    """

    def __init__(
        self,
        settings_repo: SettingsRepository,
        scheduler: Scheduler,
        announcer: Optional[Announcer] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings_repo
        self._scheduler = scheduler
        self._announcer = announcer
        self._clock = clock
        self._pending: Optional[TimerHandle] = None

    def set_announcer(self, announcer: Optional[Announcer]) -> None:
        self._announcer = announcer

    @property
    def has_pending_reversion(self) -> bool:
        return self._pending is not None

    def get_multiplier(self) -> int:
        raw = self._settings.get_setting(MULTIPLIER_KEY)
        try:
            parsed = float(raw) if raw is not None else math.nan
        except ValueError:
            parsed = math.nan

        if not math.isfinite(parsed) or parsed < 1:
            if raw != "1":
                logger.warning("Invalid stored multiplier %r, resetting to 1", raw)
                self._settings.set_setting(MULTIPLIER_KEY, "1")
            return 1
        return int(math.floor(parsed))

    def _get_expiry_ms(self) -> int:
        raw = self._settings.get_setting(EXPIRES_AT_KEY, "0")
        try:
            parsed = float(raw or 0)
        except ValueError:
            return 0
        if not math.isfinite(parsed) or parsed <= 0:
            return 0
        return int(parsed)

    def _never_expires(self) -> bool:
        return self._settings.get_setting(EXPIRES_AT_KEY, "0") == NEVER_EXPIRES

    def _set_expiry_ms(self, expires_at_ms: int) -> None:
        self._settings.set_setting(EXPIRES_AT_KEY, str(int(expires_at_ms or 0)))

    def status(self) -> MultiplierStatus:
        expiry_ms = self._get_expiry_ms()
        return MultiplierStatus(
            value=self.get_multiplier(),
            expires_at=expiry_ms / 1000.0 if expiry_ms else None,
        )

    def set_multiplier(
        self,
        value: float,
        duration_minutes: Optional[int] = None,
        announce_channel_id: Optional[str] = None,
    ) -> int:
        """
        Store a new multiplier and replace any previous expiry plan.

        A positive `duration_minutes` sets an expiry relative to now; anything
        else makes the multiplier last until changed again.
        """

        try:
            new_value = max(1, int(math.floor(value)))
        except (TypeError, ValueError, OverflowError):
            new_value = 1

        self._settings.set_setting(MULTIPLIER_KEY, str(new_value))
        if announce_channel_id:
            self._settings.set_setting(ANNOUNCE_CHANNEL_KEY, str(announce_channel_id))

        if duration_minutes and duration_minutes > 0:
            self._set_expiry_ms(int((self._clock() + duration_minutes * 60) * 1000))
            logger.info("Multiplier set to %dx for %d minute(s)", new_value, duration_minutes)
        else:
            self._settings.set_setting(EXPIRES_AT_KEY, NEVER_EXPIRES)
            logger.info("Multiplier set to %dx until further notice", new_value)
        self.schedule_reversion_if_needed()
        return new_value

    def reset_multiplier(self) -> int:
        self._cancel_pending()
        self._settings.set_setting(MULTIPLIER_KEY, "1")
        self._set_expiry_ms(0)
        logger.info("Multiplier reset to 1x")
        return 1

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def schedule_reversion_if_needed(self) -> None:
        self._cancel_pending()
        if self._never_expires():
            return

        expires_at_ms = self._get_expiry_ms()
        now_ms = self._clock() * 1000
        if not expires_at_ms or expires_at_ms <= now_ms:
            if self.get_multiplier() != 1:
                logger.info("Multiplier expired while offline, back to 1x")
                self._settings.set_setting(MULTIPLIER_KEY, "1")
            if expires_at_ms:
                self._set_expiry_ms(0)
            return

        delay = (expires_at_ms - now_ms) / 1000.0
        logger.info("Multiplier reversion scheduled in %.0f second(s)", delay)
        self._pending = self._scheduler.call_later(delay, self._expire)

    def _expire(self) -> None:
        self._pending = None
        try:
            self._settings.set_setting(MULTIPLIER_KEY, "1")
            self._set_expiry_ms(0)
            channel_id = self._settings.get_setting(ANNOUNCE_CHANNEL_KEY, "")
        except StorageError:
            logger.exception("Error ending multiplier")
            return
        logger.info("Multiplier ended, back to 1x")

        if not channel_id or self._announcer is None:
            return
        try:
            self._announcer(channel_id, EXPIRY_ANNOUNCEMENT)
        except Exception:
            logger.warning("Could not announce multiplier end in %s", channel_id, exc_info=True)
