"""
User-facing notifications for auto-applied effects.

Fire-and-forget: a notifier failure is logged and never reaches the gate.
Quiet hours suppress speech; the window may wrap past midnight.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time
from typing import Callable, Optional

from .models import Effect
from .time_utils import Clock, utc_now

logger = logging.getLogger(__name__)

# speak(text) collaborator, e.g. a voice channel
Speaker = Callable[[str], None]


@dataclass(frozen=True)
class QuietHours:
    start: time
    end: time

    @classmethod
    def parse(cls, spec: str) -> "QuietHours":
        """Parse "HH:MM-HH:MM"."""
        try:
            start_s, end_s = spec.split("-", 1)
            return cls(start=_parse_hhmm(start_s), end=_parse_hhmm(end_s))
        except ValueError as e:
            raise ValueError(f"Invalid quiet hours '{spec}': expected HH:MM-HH:MM") from e

    def contains(self, moment: datetime) -> bool:
        current = moment.time().replace(tzinfo=None)
        if self.start == self.end:
            return False
        if self.start < self.end:
            return self.start <= current < self.end
        # Wraps midnight
        return current >= self.start or current < self.end


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def describe_effect(effect: Effect) -> str:
    title = effect.payload.get("title") or effect.payload.get("name")
    if title:
        return f"Done: {effect.effect_type.value} {effect.domain} '{title}'"
    return f"Done: {effect.effect_type.value} in {effect.domain}"


class NotificationDispatcher:
    """Wraps a speaker with quiet hours and failure isolation."""

    def __init__(
        self,
        speaker: Optional[Speaker] = None,
        quiet_hours: Optional[QuietHours] = None,
        clock: Clock = utc_now,
    ):
        self.speaker = speaker
        self.quiet_hours = quiet_hours
        self.clock = clock

    def notify(self, text: str) -> bool:
        """Returns True if the speaker was invoked successfully."""
        if self.speaker is None:
            return False
        if self.quiet_hours is not None and self.quiet_hours.contains(self.clock().astimezone()):
            logger.debug("Notification suppressed (quiet hours)")
            return False
        try:
            self.speaker(text)
            return True
        except Exception as e:
            logger.error(f"Notifier failed: {e}", exc_info=True)
            return False
