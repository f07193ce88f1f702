"""Monthly/annual recurrence handling.

Occurrences are always derived from the anchor date (``anchor + k months`` or
``anchor + k years``), never from a previous occurrence, so a day 31 anchor
returns to the 31st after passing through shorter months. When the anchor's
day does not exist in a target month it is clamped to the month's last day.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List

from dateutil.relativedelta import relativedelta

from subnotifier.db.models import Category, Subscription
from subnotifier.utils.constants import Cycle
from subnotifier.utils.time_utils import to_midnight


@dataclass
class Occurrence:
    """A concrete payment date of a subscription."""

    subscription: Subscription
    date: date


@dataclass
class MonthlyDigest:
    """Payments of one calendar month, split around today."""

    month: int
    year: int
    paid: List[Occurrence] = field(default_factory=list)
    upcoming: List[Occurrence] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.paid and not self.upcoming

    @property
    def all(self) -> List[Occurrence]:
        return [*self.paid, *self.upcoming]


def _months_step(cycle: Cycle) -> int:
    if cycle == "monthly":
        return 1
    if cycle == "annually":
        return 12
    raise ValueError(f"Unknown cycle: {cycle!r}")


def _clamped(year: int, month: int, day: int) -> date:
    # relativedelta clamps to the last day of the month
    return date(year, month, 1) + relativedelta(day=day)


def next_occurrence(
    anchor_date: date | None, cycle: Cycle, reference: date | datetime
) -> date | None:
    """Get the first occurrence strictly after ``reference``.

    Args:
        anchor_date: First/reference payment date
        cycle: "monthly" or "annually"
        reference: Instant to compare against; a plain date counts as its midnight

    Returns:
        The occurrence date, or None when there is no anchor
    """
    if anchor_date is None:
        return None

    step = _months_step(cycle)
    ref = reference if isinstance(reference, datetime) else to_midnight(reference)
    if ref.tzinfo is not None:
        ref = ref.replace(tzinfo=None)

    # Jump close to the reference instead of walking from the anchor
    months_apart = (ref.year - anchor_date.year) * 12 + (ref.month - anchor_date.month)
    k = max(0, months_apart // step - 1)

    while True:
        candidate = anchor_date + relativedelta(months=k * step)
        if to_midnight(candidate) > ref:
            return candidate
        k += 1


def occurrence_within_month(
    anchor_date: date | None, cycle: Cycle, month: int, year: int
) -> date | None:
    """Get the payment date falling in the given calendar month, if any.

    Monthly subscriptions pay every month. Annual ones pay only in the anchor's
    month, starting from the anchor's year.
    """
    if anchor_date is None:
        return None

    if cycle == "monthly":
        return _clamped(year, month, anchor_date.day)

    if cycle == "annually":
        if month == anchor_date.month and year >= anchor_date.year:
            return _clamped(year, month, anchor_date.day)
        return None

    raise ValueError(f"Unknown cycle: {cycle!r}")


def days_until(target: date | datetime, reference: date | datetime) -> int:
    """Calendar days from ``reference`` to ``target``, both truncated to midnight."""
    target_midnight = to_midnight(target).replace(tzinfo=None)
    reference_midnight = to_midnight(reference).replace(tzinfo=None)
    return (target_midnight - reference_midnight).days


def monthly_equivalent(cost: float, cycle: Cycle) -> float:
    """Approximate monthly cost of a subscription."""
    return cost / 12 if cycle == "annually" else cost


def filter_schedulable(
    subscriptions: Iterable[Subscription], categories: Dict[int, Category]
) -> List[Subscription]:
    """Drop subscriptions with no anchor or sitting in a no-reminder category."""
    result = []
    for sub in subscriptions:
        if sub.anchor_date is None:
            continue
        category = categories.get(sub.category_id)
        if category is not None and not category.has_reminders:
            continue
        result.append(sub)
    return result
