# app/herd.py
"""
Breeding worklist: per-cow status summaries built from AI records, and the
urgency ordering used to list them.

Ordering keys, in order:
  1. group      0 close-up pregnant (<= 60 days to calving), 1 other pregnant,
                2 pending, 3 delivered, 9 anything else
  2. secondary  days to calving (0/1), days to PD due (2, overdue first),
                negative days since delivery (3, longest since calving
                first, missing = 0)
  3. last AI date, missing last
  4. service number, missing = 99
  5. cow number
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from app.config import BUFFALO_GESTATION_DAYS, COW_GESTATION_DAYS
from app.models import AIRecord, Cow, PDResult, Species

CLOSE_UP_DAYS = 60
PD_DUE_AFTER_AI_DAYS = 60
UNKNOWN_DAYS = 9999
UNKNOWN_SERVICE = 99
_NO_AI_DATE = date.max.toordinal() + 1

# summary filters (days are calendar days relative to today)
ABOUT_TO_DELIVER_DAYS = 35
PD_WINDOW = (45, 60)


class BreedingStatus(str, Enum):
    Pregnant = "Pregnant"
    Pending = "Pending"
    Delivered = "Delivered"


class WorklistFilter(str, Enum):
    all = "all"
    about_to_deliver = "about_to_deliver"
    pd_due = "pd_due"


def parse_day(value: Any) -> Optional[date]:
    """Calendar day from a date, datetime or ISO string; anything else is None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            return None
    return None


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _status(value: Any) -> str:
    if isinstance(value, BreedingStatus):
        return value
    try:
        return BreedingStatus(value)
    except (TypeError, ValueError):
        return "" if value is None else str(value)


def expected_delivery(ai_date: date, species: Species = Species.cow) -> date:
    days = BUFFALO_GESTATION_DAYS if species == Species.buffalo else COW_GESTATION_DAYS
    return ai_date + timedelta(days=days)


# ---------------------------------------------------------------------
# Sort records
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class BreedingStatusRecord:
    cow_number: int
    status: str
    expected_delivery_date: Optional[date] = None
    delivered_on_date: Optional[date] = None
    last_ai_date: Optional[date] = None
    service_number: Optional[int] = None

    @property
    def pd_due_date(self) -> Optional[date]:
        if self.last_ai_date is None:
            return None
        try:
            return self.last_ai_date + timedelta(days=PD_DUE_AFTER_AI_DAYS)
        except OverflowError:
            return None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "BreedingStatusRecord":
        """
        Normalize a loosely typed record. Unparsable dates become None and an
        unknown status is kept as-is, so it lands in the catch-all group.
        """
        return cls(
            cow_number=_int_or_none(raw.get("cow_number")) or 0,
            status=_status(raw.get("status")),
            expected_delivery_date=parse_day(raw.get("expected_delivery_date")),
            delivered_on_date=parse_day(raw.get("delivered_on_date")),
            last_ai_date=parse_day(raw.get("last_ai_date")),
            service_number=_int_or_none(raw.get("service_number")),
        )

    @classmethod
    def from_summary(cls, summary: "CowSummary") -> "BreedingStatusRecord":
        # Not Pregnant / Failed cows are waiting on a repeat service
        if summary.status == BreedingStatus.Delivered:
            status = BreedingStatus.Delivered
        elif summary.status == BreedingStatus.Pregnant:
            status = BreedingStatus.Pregnant
        else:
            status = BreedingStatus.Pending
        return cls(
            cow_number=_int_or_none(summary.cow_number) or 0,
            status=status,
            expected_delivery_date=parse_day(summary.expected_delivery_date),
            delivered_on_date=parse_day(summary.delivered_date),
            last_ai_date=parse_day(summary.latest_ai_date),
            service_number=_int_or_none(summary.service_number),
        )


def _days_to(day: Optional[date], today: date) -> Optional[int]:
    return (day - today).days if day else None


def priority_group(record: BreedingStatusRecord, today: date) -> int:
    if record.status == BreedingStatus.Pregnant:
        days = _days_to(record.expected_delivery_date, today)
        if days is not None and days <= CLOSE_UP_DAYS:
            return 0
        return 1
    if record.status == BreedingStatus.Pending:
        return 2
    if record.status == BreedingStatus.Delivered:
        return 3
    return 9


def secondary_key(record: BreedingStatusRecord, today: date, group: Optional[int] = None) -> int:
    if group is None:
        group = priority_group(record, today)
    if group in (0, 1):
        days = _days_to(record.expected_delivery_date, today)
        return UNKNOWN_DAYS if days is None else days
    if group == 2:
        days = _days_to(record.pd_due_date, today)
        return UNKNOWN_DAYS if days is None else days
    if group == 3:
        # negative days since delivery: longest since calving first
        days = _days_to(record.delivered_on_date, today)
        return 0 if days is None else days
    return UNKNOWN_DAYS


def sort_key(record: BreedingStatusRecord, today: date) -> Tuple[int, int, int, int, int]:
    group = priority_group(record, today)
    return (
        group,
        secondary_key(record, today, group),
        record.last_ai_date.toordinal() if record.last_ai_date else _NO_AI_DATE,
        UNKNOWN_SERVICE if record.service_number is None else record.service_number,
        record.cow_number,
    )


def compare(a: BreedingStatusRecord, b: BreedingStatusRecord, today: Optional[date] = None) -> int:
    """Three-way comparison consistent with sort_worklist."""
    today = today or date.today()
    ka, kb = sort_key(a, today), sort_key(b, today)
    return (ka > kb) - (ka < kb)


def sort_worklist(records: Iterable[BreedingStatusRecord], today: Optional[date] = None) -> List[BreedingStatusRecord]:
    today = today or date.today()
    return sorted(records, key=lambda r: sort_key(r, today))


# ---------------------------------------------------------------------
# Cow summaries
# ---------------------------------------------------------------------


@dataclass
class CowSummary:
    cow_id: int
    cow_number: int
    latest_ai_date: Optional[date]
    service_number: int
    status: str  # Pregnant / Not Pregnant / Failed / Pending / Delivered
    expected_delivery_date: Optional[date] = None
    pd_date: Optional[date] = None
    pd_done: bool = False
    delivered_date: Optional[date] = None
    notes: Optional[str] = None
    ai_record_id: Optional[int] = None


def summary_status(record: AIRecord) -> str:
    if record.actual_delivery_date:
        return "Delivered"
    if record.pd_result == PDResult.positive:
        return "Pregnant"
    if record.pd_result == PDResult.negative:
        return "Not Pregnant"
    if record.ai_status == "failed":
        return "Failed"
    return "Pending"


def summarize_ai_records(rows: Iterable[Tuple[AIRecord, Cow]]) -> List[CowSummary]:
    """One summary per cow, built from its latest AI record."""
    latest = {}
    for record, cow in rows:
        existing = latest.get(cow.id)
        if existing is None or record.ai_date > existing[0].ai_date:
            latest[cow.id] = (record, cow)

    return [
        CowSummary(
            cow_id=cow.id,
            cow_number=cow.cow_number,
            latest_ai_date=record.ai_date,
            service_number=record.service_number or 1,
            status=summary_status(record),
            expected_delivery_date=record.expected_delivery_date,
            pd_date=record.pd_date,
            pd_done=record.pd_done,
            delivered_date=record.actual_delivery_date,
            notes=record.notes,
            ai_record_id=record.id,
        )
        for record, cow in latest.values()
    ]


def filter_summaries(
    summaries: Iterable[CowSummary],
    worklist_filter: WorklistFilter = WorklistFilter.all,
    include_delivered: bool = True,
    today: Optional[date] = None,
) -> List[CowSummary]:
    today = today or date.today()
    kept = []
    for summary in summaries:
        if not include_delivered and summary.status == BreedingStatus.Delivered:
            continue

        ai_day = parse_day(summary.latest_ai_date)
        days_after_ai = (today - ai_day).days if ai_day else 999
        due_day = parse_day(summary.expected_delivery_date)
        days_to_delivery = (due_day - today).days if due_day else 999

        if worklist_filter == WorklistFilter.about_to_deliver:
            if not 0 <= days_to_delivery <= ABOUT_TO_DELIVER_DAYS:
                continue
        elif worklist_filter == WorklistFilter.pd_due:
            if not (PD_WINDOW[0] <= days_after_ai <= PD_WINDOW[1]) or summary.pd_done:
                continue
        kept.append(summary)
    return kept


def sort_cow_summaries(summaries: Sequence[CowSummary], today: Optional[date] = None) -> List[CowSummary]:
    """Order summaries by urgency; each summary is normalized once."""
    today = today or date.today()
    decorated = [(sort_key(BreedingStatusRecord.from_summary(s), today), s) for s in summaries]
    decorated.sort(key=lambda pair: pair[0])
    return [s for _, s in decorated]
