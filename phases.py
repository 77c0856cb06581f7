from datetime import date, datetime
from typing import Optional, Union

from schemas import CycleEstimate

CYCLE_LENGTH = 28
ANCHOR = date(2026, 2, 1)

PHASES = ("menstrual", "follicular", "ovulation", "luteal")
UNKNOWN = "unknown"

PHASE_INSIGHTS = {
    "menstrual": "Go gentle today. Warm foods and hydration can feel great.",
    "follicular": "Energy tends to rise. Great time for planning and lighter meals.",
    "ovulation": "Peak energy window. Prioritize protein + hydration.",
    "luteal": "Cravings and bloating can show up. Try magnesium + warm meals.",
}

DateLike = Union[date, datetime, str]


def to_date(value: Optional[DateLike]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    return datetime.fromisoformat(text.replace("Z", "+00:00")).date()


def phase_for_day(cycle_day: int) -> str:
    if cycle_day <= 5:
        return "menstrual"
    if cycle_day <= 13:
        return "follicular"
    if cycle_day <= 16:
        return "ovulation"
    return "luteal"


def anchor_cycle_day(target: date) -> int:
    diff = (target - ANCHOR).days
    return ((diff % CYCLE_LENGTH) + CYCLE_LENGTH) % CYCLE_LENGTH + 1


def estimate_phase(target: Optional[DateLike], last_period_start: Optional[DateLike] = None) -> CycleEstimate:
    """Cycle day and phase for ``target``.

    Counts from ``last_period_start`` when it is on or before the target,
    otherwise falls back to the fixed 28-day anchor model. A missing target
    gives the ``unknown`` phase.
    """
    day = to_date(target)
    if day is None:
        return CycleEstimate(cycle_day=None, phase=UNKNOWN)

    start = to_date(last_period_start)
    if start is not None and start <= day:
        cycle_day = (day - start).days + 1
        source = "last_period_start"
    else:
        cycle_day = anchor_cycle_day(day)
        source = "anchor"
    return CycleEstimate(cycle_day=cycle_day, phase=phase_for_day(cycle_day), source=source)
