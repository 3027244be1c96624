"""Payment-plan arithmetic.

A payment plan is a subscription that must stop after a fixed number of
installments. These helpers project its end date and track installment
progress from the number of paid invoices.
"""

import calendar
import datetime as dt
from dataclasses import dataclass

_DAYS_PER_UNIT = {"day": 1, "week": 7}


def add_interval(start: dt.datetime, interval: str, count: int) -> dt.datetime:
    """Add ``count`` billing intervals to ``start``.

    Month and year arithmetic clamps to the last day of the target month
    (Jan 31 + 1 month = Feb 28/29).

    Raises:
        ValueError: For an unknown interval unit.
    """
    if interval in _DAYS_PER_UNIT:
        return start + dt.timedelta(days=_DAYS_PER_UNIT[interval] * count)

    if interval == "month":
        months = count
    elif interval == "year":
        months = 12 * count
    else:
        raise ValueError(f"Unknown billing interval: {interval}")

    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def projected_end_date(
    start: dt.datetime,
    interval: str,
    interval_count: int,
    payment_count: int,
) -> dt.datetime:
    """End of a payment plan: start + interval * interval_count * payment_count."""
    return add_interval(start, interval, interval_count * payment_count)


def subscription_interval(subscription: dict) -> tuple[str, int]:
    """Billing (interval, interval_count) of a Stripe subscription.

    Read from ``plan`` when present, otherwise from the first item's price.
    """
    plan = subscription.get("plan") or {}
    recurring = plan if plan.get("interval") else {}
    if not recurring:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            recurring = (items[0].get("price") or {}).get("recurring") or {}
    return recurring.get("interval") or "month", int(recurring.get("interval_count") or 1)


@dataclass(frozen=True)
class InstallmentProgress:
    paid: int
    total: int

    @property
    def completed(self) -> bool:
        return self.paid >= self.total

    @property
    def remaining(self) -> int:
        return max(self.total - self.paid, 0)
