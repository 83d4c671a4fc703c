from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable


@dataclass(frozen=True)
class StreakResult:
    streak_length: int
    last_active_date: date


def calculate_streak(
    activity: Iterable[datetime | date],
    today: date | None = None,
) -> StreakResult:
    """
    Consecutive-day activity streak ending at the most recent active day.

    Timestamps collapse to calendar dates (UTC). If the most recent date is
    older than yesterday the streak is broken (0); otherwise count back from it
    one day at a time, stopping at the first gap.
    """
    today = today or datetime.utcnow().date()

    unique_dates = {a.date() if isinstance(a, datetime) else a for a in activity}
    if not unique_dates:
        return StreakResult(streak_length=0, last_active_date=today)

    ordered = sorted(unique_dates, reverse=True)
    last_active = ordered[0]

    if (today - last_active).days > 1:
        return StreakResult(streak_length=0, last_active_date=last_active)

    streak = 1
    current = last_active
    for previous in ordered[1:]:
        if (current - previous).days != 1:
            break
        streak += 1
        current = previous

    return StreakResult(streak_length=streak, last_active_date=last_active)
