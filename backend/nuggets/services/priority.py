from __future__ import annotations

import math
from datetime import datetime

SECONDS_PER_DAY = 86400


def compute_priority_score(
    created_at: datetime,
    times_reviewed: int,
    now: datetime | None = None,
) -> float:
    """
    Priority for resurfacing an item: grows with age, shrinks with each review.

        priority = ln(age_days + 1) / (1 + 0.5 * times_reviewed)

    `age_days` is floored at 1 so a freshly captured item still scores ln(2).
    All datetimes are naive UTC, matching the ORM columns.
    """
    now = now or datetime.utcnow()
    age_days = max((now - created_at).total_seconds() / SECONDS_PER_DAY, 1)
    review_penalty = 1 + 0.5 * max(times_reviewed, 0)
    return math.log(age_days + 1) / review_penalty
