"""Metrics Aggregator: event log + session aggregates -> FormAnalyticsReport.

``compute_report`` is a pure function of its inputs. Rows are re-sorted
before use so the result does not depend on the order a store returns them
in, and all rates are rounded half-up to one decimal with ``decimal`` so the
same data always serialises to the same JSON.

Definitions:
    conversionRate         submissions / views * 100            (0 without views)
    averageCompletionTime  mean timeSpent of submit events      (0 without submissions)
    bounceRate             (sessions - completed) / sessions * 100
    completionRate         min(blur, focus) / focus * 100       per field
    dropOffRate            100 - completionRate                 per field
    averageTime            focus timeSpent / focus             per field
    deviceAnalytics        sessions per class / all sessions * 100
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from formtrack.db.base import EventStore, SessionStore
from formtrack.events import EventType, InteractionEvent, field_id_of
from formtrack.geo import GeoEnricher
from formtrack.models.analytics import (
    AnalyticsOverview,
    DailyActivity,
    DeviceAnalytics,
    FieldAnalytics,
    FormAnalyticsReport,
    GeoBreakdown,
)
from formtrack.sessions import SessionAggregate

logger = logging.getLogger("formtrack.aggregator")

REPORTED_EVENT_TYPES = (
    EventType.VIEW.value,
    EventType.FIELD_FOCUS.value,
    EventType.FIELD_BLUR.value,
    EventType.SUBMIT.value,
)

_ONE_DP = Decimal("0.1")
_HUNDRED = Decimal(100)
DEVICE_CLASSES = ("desktop", "mobile", "tablet")
UNKNOWN_COUNTRY = "Unknown"


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(_ONE_DP, rounding=ROUND_HALF_UP)


def percent(part: int, whole: int) -> float:
    """``part / whole * 100`` to one decimal; 0 when ``whole`` is 0."""
    if whole <= 0:
        return 0.0
    return float(_quantize(Decimal(part) * _HUNDRED / Decimal(whole)))


def mean(total: int, count: int) -> float:
    if count <= 0:
        return 0.0
    return float(_quantize(Decimal(total) / Decimal(count)))


def _utc_date(ts: datetime) -> str:
    return ts.astimezone(UTC).date().isoformat()


def device_class(device_info: dict[str, Any] | None) -> str | None:
    """desktop/mobile/tablet from the opaque device payload, else None."""
    if not isinstance(device_info, dict):
        return None
    for key in ("deviceType", "device_type", "device", "type"):
        value = device_info.get(key)
        if isinstance(value, str) and value.strip().lower() in DEVICE_CLASSES:
            return value.strip().lower()
    return None


@dataclass
class _FieldTally:
    focus: int = 0
    blur: int = 0
    time: int = 0


def _field_analytics(events: list[InteractionEvent]) -> list[FieldAnalytics]:
    tallies: dict[str, _FieldTally] = {}
    for event in events:
        if event.event_type == EventType.FIELD_FOCUS.value:
            tally = tallies.setdefault(field_id_of(event), _FieldTally())
            tally.focus += 1
            tally.time += event.time_spent
        elif event.event_type == EventType.FIELD_BLUR.value:
            tally = tallies.setdefault(field_id_of(event), _FieldTally())
            tally.blur += 1

    entries: list[FieldAnalytics] = []
    for field_id, tally in tallies.items():
        if tally.focus == 0:
            entries.append(FieldAnalytics(field_id=field_id, field_label=field_id, blur_count=tally.blur))
            continue
        completion = _quantize(Decimal(min(tally.blur, tally.focus)) * _HUNDRED / Decimal(tally.focus))
        entries.append(
            FieldAnalytics(
                field_id=field_id,
                field_label=field_id,
                focus_count=tally.focus,
                blur_count=tally.blur,
                completion_rate=float(completion),
                drop_off_rate=float(_HUNDRED - completion),
                average_time=mean(tally.time, tally.focus),
            )
        )
    return entries


def _daily_series(events: list[InteractionEvent]) -> list[DailyActivity]:
    days: dict[str, DailyActivity] = {}
    for event in events:
        if event.event_type not in (EventType.VIEW.value, EventType.SUBMIT.value):
            continue
        date = _utc_date(event.occurred_at)
        day = days.get(date)
        if day is None:
            day = days[date] = DailyActivity(date=date)
        if event.event_type == EventType.VIEW.value:
            day.views += 1
        else:
            day.submissions += 1
    # ISO dates sort chronologically; days without activity are absent
    return [days[d] for d in sorted(days)]


def _device_analytics(sessions: list[SessionAggregate]) -> DeviceAnalytics:
    counts = Counter(device_class(s.device_info) for s in sessions)
    total = len(sessions)
    return DeviceAnalytics(**{cls: percent(counts.get(cls, 0), total) for cls in DEVICE_CLASSES})


def _geographic_data(submits: list[InteractionEvent], geo: GeoEnricher) -> list[GeoBreakdown]:
    countries: Counter[str] = Counter()
    for event in submits:
        location = geo.locate(event.ip_address) if event.ip_address else None
        countries[(location.country if location and location.country else UNKNOWN_COUNTRY)] += 1
    total = len(submits)
    ordered = sorted(countries.items(), key=lambda kv: (-kv[1], kv[0]))
    return [
        GeoBreakdown(country=country, submissions=count, percentage=percent(count, total))
        for country, count in ordered
    ]


def compute_report(
    events: list[InteractionEvent],
    sessions: list[SessionAggregate],
    geo: GeoEnricher | None = None,
) -> FormAnalyticsReport:
    """Build the report for one form and window from already-selected rows."""
    events = sorted(events, key=lambda e: (e.occurred_at, e.id or 0))
    sessions = sorted(sessions, key=lambda s: (s.started_at, s.session_id))

    views = [e for e in events if e.event_type == EventType.VIEW.value]
    submits = [e for e in events if e.event_type == EventType.SUBMIT.value]
    completed = sum(1 for s in sessions if s.is_completed)

    overview = AnalyticsOverview(
        total_submissions=len(submits),
        total_views=len(views),
        conversion_rate=percent(len(submits), len(views)),
        average_completion_time=mean(sum(e.time_spent for e in submits), len(submits)),
        bounce_rate=percent(len(sessions) - completed, len(sessions)),
    )

    return FormAnalyticsReport(
        overview=overview,
        submissions_by_date=_daily_series(events),
        field_analytics=_field_analytics(events),
        device_analytics=_device_analytics(sessions),
        geographic_data=_geographic_data(submits, geo) if geo is not None else [],
    )


class MetricsAggregator:
    """Reads one form's window from the stores and computes its report."""

    def __init__(
        self,
        events: EventStore,
        sessions: SessionStore,
        geo: GeoEnricher | None = None,
    ) -> None:
        self._events = events
        self._sessions = sessions
        self._geo = geo

    async def report(self, form_id: str, start: datetime, end: datetime) -> FormAnalyticsReport:
        events, sessions = await asyncio.gather(
            self._events.list_between(form_id, start, end, event_types=REPORTED_EVENT_TYPES),
            self._sessions.list_started_between(form_id, start, end),
        )
        logger.debug(
            "aggregate form=%s events=%d sessions=%d start=%s end=%s",
            form_id,
            len(events),
            len(sessions),
            start.isoformat(),
            end.isoformat(),
        )
        return compute_report(events, sessions, self._geo)
