"""
Risk throttle: global inter-buy cooldown plus a daily buy quota.

The quota period is the UTC calendar day. Rollover is checked on every
admit() and can also be driven by a periodic roll_period() call, so the
counter resets even on days without buy attempts.
A buy aborted before submission is handed back with release().
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class ThrottleConfig:
    """Configuration for the risk throttle."""

    cooldown_seconds: float = 60.0
    max_buys_per_day: Optional[int] = None  # None means no daily cap


@dataclass
class ThrottleState:
    """Process-wide throttle counters."""

    last_buy_timestamp: Optional[float] = None
    buys_in_current_period: int = 0
    current_period_start: Optional[date] = None


def _utc_day(ts: float) -> date:
    return datetime.fromtimestamp(ts, tz=timezone.utc).date()


class RiskThrottle:
    """
    Admits or rejects buys.

    Usage:
        throttle = RiskThrottle(ThrottleConfig(cooldown_seconds=60, max_buys_per_day=20))

        if throttle.admit(now):
            submit_buy()
    """

    def __init__(self, config: Optional[ThrottleConfig] = None) -> None:
        self._config = config or ThrottleConfig()
        self._state = ThrottleState()
        # Admit time -> (previous last_buy_timestamp, period the buy counted in)
        self._reservations: dict[float, tuple[Optional[float], Optional[date]]] = {}

    @property
    def config(self) -> ThrottleConfig:
        return self._config

    @property
    def state(self) -> ThrottleState:
        return self._state

    def roll_period(self, now: float) -> bool:
        """
        Reset the daily counter if the calendar day changed.

        Returns:
            True if a rollover happened
        """
        today = _utc_day(now)
        if self._state.current_period_start is None:
            self._state.current_period_start = today
            return False
        if today != self._state.current_period_start:
            logger.info(
                f"Buy quota period rolled over ({self._state.buys_in_current_period} "
                f"buys on {self._state.current_period_start})"
            )
            self._state.current_period_start = today
            self._state.buys_in_current_period = 0
            return True
        return False

    def rejection_reason(self, now: float) -> Optional[str]:
        """Why a buy at `now` would be rejected, or None if it would be admitted."""
        self.roll_period(now)
        state = self._state

        if state.last_buy_timestamp is not None:
            elapsed = now - state.last_buy_timestamp
            if elapsed < self._config.cooldown_seconds:
                return f"cooldown ({elapsed:.1f}s < {self._config.cooldown_seconds}s)"

        cap = self._config.max_buys_per_day
        if cap is not None and state.buys_in_current_period >= cap:
            return f"daily cap reached ({state.buys_in_current_period}/{cap})"

        return None

    def admit(self, now: float) -> bool:
        """
        Admit a buy at `now`, recording it on success.

        Returns:
            False during cooldown or when the daily cap is reached
        """
        reason = self.rejection_reason(now)
        if reason is not None:
            logger.info(f"Throttle rejected buy: {reason}")
            return False

        self._reservations[now] = (
            self._state.last_buy_timestamp,
            self._state.current_period_start,
        )
        self._state.last_buy_timestamp = now
        self._state.buys_in_current_period += 1
        return True

    def release(self, admitted_at: float) -> bool:
        """
        Undo an admit() whose buy was never submitted.

        The cooldown timestamp is restored only if no later buy has been
        admitted since. The quota slot is given back unless the period
        rolled over in between.

        Returns:
            False if no buy was admitted at `admitted_at`
        """
        reservation = self._reservations.pop(admitted_at, None)
        if reservation is None:
            return False

        previous_timestamp, admitted_period = reservation
        if self._state.last_buy_timestamp == admitted_at:
            self._state.last_buy_timestamp = previous_timestamp
        if (
            admitted_period == self._state.current_period_start
            and self._state.buys_in_current_period > 0
        ):
            self._state.buys_in_current_period -= 1

        logger.info(
            f"Released throttle reservation "
            f"({self._state.buys_in_current_period} buys this period)"
        )
        return True

    def confirm(self, admitted_at: float) -> None:
        """Drop the reservation for a buy that reached the execution service."""
        self._reservations.pop(admitted_at, None)
