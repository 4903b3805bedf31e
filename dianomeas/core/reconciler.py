"""
Event reconciliation for device lifecycles.

Scans a project's event log page by page, most recent first, and pairs
creation and deletion events per device id. Pagination stops as soon as
an event falls before the scan window, since every later event is older.

Events that cannot be attributed cleanly are classified as data anomalies
and reported alongside the records instead of being dropped silently.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum, auto
from typing import Callable, Dict, List, Optional

from dianomeas.provider.models import Event, EventType

DEFAULT_DEVICE_PREFIX = "ipi"
DEFAULT_MAX_PAGES = 30
DEFAULT_PAGE_SIZE = 500

# First double-quoted substring of the event text
DEVICE_ID_PATTERN = re.compile(r'"([^"]*)"')

logger = logging.getLogger(__name__)


class AnomalyKind(Enum):
    """Classes of events or records excluded from analytics."""
    MALFORMED_EVENT = "malformed_event"
    MISSING_DEVICE_ID = "missing_device_id"
    DELETION_WITHOUT_CREATION = "deletion_without_creation"
    DELETION_BEFORE_CREATION = "deletion_before_creation"


@dataclass(frozen=True)
class DataAnomaly:
    """A single classified anomaly."""
    kind: AnomalyKind
    device_id: str
    detail: str
    event_id: Optional[str] = None


@dataclass
class LifecycleRecord:
    """Creation and deletion timestamps observed for one device."""
    device_id: str
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_paired(self) -> bool:
        return self.created_at is not None and self.deleted_at is not None

    @property
    def is_inverted(self) -> bool:
        """True when the deletion precedes the creation."""
        return self.is_paired and self.created_at > self.deleted_at

    @property
    def uptime(self) -> Optional[timedelta]:
        """Time between creation and deletion, only for consistent pairs."""
        if not self.is_paired or self.is_inverted:
            return None
        return self.deleted_at - self.created_at


@dataclass
class ReconciliationResult:
    """Output of a reconciliation run."""
    records: Dict[str, LifecycleRecord] = field(default_factory=dict)
    daily_creations: Dict[date, int] = field(default_factory=dict)
    anomalies: List[DataAnomaly] = field(default_factory=list)
    pages_fetched: int = 0
    events_scanned: int = 0
    skipped_outside_window: int = 0
    skipped_foreign: int = 0
    stopped_by_window: bool = False

    def anomaly_counts(self) -> Dict[AnomalyKind, int]:
        counts: Dict[AnomalyKind, int] = {}
        for anomaly in self.anomalies:
            counts[anomaly.kind] = counts.get(anomaly.kind, 0) + 1
        return counts


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar date range."""
    start: date
    end: date

    def __post_init__(self):
        """Validate the range is ordered."""
        if self.start > self.end:
            raise ValueError(
                f"from date {self.start.isoformat()} is after to date {self.end.isoformat()}"
            )


class _Window(Enum):
    INCLUDE = auto()
    SKIP = auto()
    STOP = auto()


def extract_device_id(text: str) -> str:
    """Return the first double-quoted substring of text, or "" if none."""
    match = DEVICE_ID_PATTERN.search(text or "")
    return match.group(1) if match else ""


def _utc_day(moment: datetime) -> date:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).date()


class EventReconciler:
    """Builds lifecycle records from a project's event log."""

    def __init__(
        self,
        event_service,
        project_id: str,
        device_prefix: str = DEFAULT_DEVICE_PREFIX,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the reconciler.

        Args:
            event_service: Object exposing list_events(project_id, page, per_page)
            project_id: Provider project identifier
            device_prefix: Id prefix marking devices created by this tool
            clock: Returns the current time; defaults to UTC now
        """
        self.event_service = event_service
        self.project_id = project_id
        self.device_prefix = device_prefix
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def reconcile(
        self,
        lookback_days: int,
        max_pages: int = DEFAULT_MAX_PAGES,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> ReconciliationResult:
        """Reconcile the last lookback_days days, excluding today.

        Args:
            lookback_days: Days of history to scan
            max_pages: Upper bound on fetched pages
            page_size: Events per page

        Returns:
            ReconciliationResult with records, daily counts and anomalies

        Raises:
            ValueError: If a parameter is out of range
            TransportError: If fetching a page fails
        """
        if lookback_days < 0:
            raise ValueError("lookback_days must be >= 0")

        today = _utc_day(self.clock())

        def classify(day: date) -> _Window:
            offset = (today - day).days
            if offset > lookback_days:
                return _Window.STOP
            # Same-day (and clock-skewed future) events are noise
            if offset <= 0:
                return _Window.SKIP
            return _Window.INCLUDE

        logger.info("Fetching events for the last %d days", lookback_days)
        return self._scan(classify, today, max_pages, page_size)

    def reconcile_range(
        self,
        date_range: DateRange,
        max_pages: int = DEFAULT_MAX_PAGES,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> ReconciliationResult:
        """Reconcile events dated within date_range (inclusive on both ends).

        Events newer than the range are skipped; the first event older than
        the range stops the scan.
        """
        start, end = date_range.start, date_range.end

        def classify(day: date) -> _Window:
            if day < start:
                return _Window.STOP
            if day > end:
                return _Window.SKIP
            return _Window.INCLUDE

        logger.info("Fetching events from %s to %s", start.isoformat(), end.isoformat())
        return self._scan(classify, _utc_day(self.clock()), max_pages, page_size)

    def _scan(
        self,
        classify: Callable[[date], _Window],
        today: date,
        max_pages: int,
        page_size: int,
    ) -> ReconciliationResult:
        if max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")

        result = ReconciliationResult()
        last_day: Optional[date] = None

        for page in range(1, max_pages + 1):
            events = self.event_service.list_events(self.project_id, page, page_size)
            result.pages_fetched += 1
            if not events:
                break

            for event in events:
                result.events_scanned += 1
                if event.is_malformed:
                    logger.warning("Skipping malformed event: %s", event.parse_error)
                    result.anomalies.append(DataAnomaly(
                        kind=AnomalyKind.MALFORMED_EVENT,
                        device_id=extract_device_id(event.interpolated),
                        detail=event.parse_error,
                        event_id=event.id or None,
                    ))
                    continue

                day = _utc_day(event.created_at)
                decision = classify(day)

                if decision is _Window.STOP:
                    result.stopped_by_window = True
                    logger.debug("Event %s on %s is outside the window, stopping", event.id, day)
                    return self._finish(result)
                if decision is _Window.SKIP:
                    result.skipped_outside_window += 1
                    continue

                if day != last_day:
                    logger.info("Scanning events for %s (T-%d)", day.isoformat(), (today - day).days)
                    last_day = day

                self._apply(event, day, result)

        return self._finish(result)

    def _apply(self, event: Event, day: date, result: ReconciliationResult) -> None:
        if event.type is EventType.OTHER:
            return

        device_id = extract_device_id(event.interpolated)
        if not device_id:
            result.anomalies.append(DataAnomaly(
                kind=AnomalyKind.MISSING_DEVICE_ID,
                device_id="",
                detail=f"No quoted device id in {event.raw_type or event.type.value} event text",
                event_id=event.id,
            ))
            return

        if not device_id.startswith(self.device_prefix):
            result.skipped_foreign += 1
            return

        record = result.records.setdefault(device_id, LifecycleRecord(device_id))
        if event.type is EventType.CREATED:
            record.created_at = event.created_at
            result.daily_creations[day] = result.daily_creations.get(day, 0) + 1
        else:
            record.deleted_at = event.created_at

    def _finish(self, result: ReconciliationResult) -> ReconciliationResult:
        for device_id in sorted(result.records):
            record = result.records[device_id]
            if record.deleted_at is not None and record.created_at is None:
                result.anomalies.append(DataAnomaly(
                    kind=AnomalyKind.DELETION_WITHOUT_CREATION,
                    device_id=device_id,
                    detail="Deletion observed without a creation in the window",
                ))
            elif record.is_inverted:
                result.anomalies.append(DataAnomaly(
                    kind=AnomalyKind.DELETION_BEFORE_CREATION,
                    device_id=device_id,
                    detail=(
                        f"Deleted at {record.deleted_at.isoformat()} before "
                        f"created at {record.created_at.isoformat()}"
                    ),
                ))

        if result.anomalies:
            logger.warning("%d data anomalies excluded from analytics", len(result.anomalies))
        return result
