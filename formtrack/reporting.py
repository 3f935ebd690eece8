"""Reporting Facade: range tokens, authorization, and the shaped report."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Final

from formtrack.aggregator import MetricsAggregator
from formtrack.auth import FormDirectory, ensure_form_access
from formtrack.errors import StorageError
from formtrack.models.analytics import FormAnalyticsResponse

logger = logging.getLogger("formtrack.reporting")

RANGE_DAYS: Final[dict[str, int]] = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_RANGE: Final[str] = "7d"


def resolve_range(token: str | None) -> str:
    """``token`` when it is exactly a known range, else ``7d``."""
    if token in RANGE_DAYS:
        return token
    return DEFAULT_RANGE


def window_for(token: str, now: datetime) -> tuple[datetime, datetime]:
    return now - timedelta(days=RANGE_DAYS[token]), now


class ReportingFacade:
    def __init__(
        self,
        aggregator: MetricsAggregator,
        forms: FormDirectory,
        reveal_form_existence: bool = False,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._aggregator = aggregator
        self._forms = forms
        self._reveal = reveal_form_existence
        self._clock = clock

    async def form_report(
        self,
        form_id: str,
        user_id: str,
        range_token: str | None = None,
    ) -> FormAnalyticsResponse:
        """Analytics for ``form_id`` over the requested window.

        Raises ``NotFoundError``/``ForbiddenError`` before touching analytics
        data, and ``StorageError`` when the report cannot be computed. A form
        without any data yields an all-zero report.
        """
        await ensure_form_access(self._forms, form_id, user_id, self._reveal)
        return await self.build(form_id, range_token)

    async def build(self, form_id: str, range_token: str | None = None) -> FormAnalyticsResponse:
        """Unauthenticated report computation, for trusted callers only."""
        token = resolve_range(range_token)
        start, end = window_for(token, self._clock())
        try:
            report = await self._aggregator.report(form_id, start, end)
        except StorageError:
            raise
        except Exception as e:
            logger.exception("report.failed form=%s range=%s", form_id, token)
            raise StorageError(detail=f"Failed to compute analytics: {e}", form_id=form_id) from e
        return FormAnalyticsResponse(
            form_id=form_id,
            range=token,
            start_date=start,
            end_date=end,
            analytics=report,
        )
