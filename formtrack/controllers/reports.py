"""
REST API endpoint for form analytics.

Endpoints:
    GET /analytics/{form_id} - Analytics report for one form over 7, 30 or 90 days
"""

from fastapi import APIRouter, Query

from formtrack.dependencies import CurrentUser, Facade
from formtrack.models.analytics import FormAnalyticsResponse

router = APIRouter(tags=["analytics"])


@router.get("/analytics/{form_id}", response_model=FormAnalyticsResponse)
async def get_form_analytics(
    form_id: str,
    user_id: CurrentUser,
    facade: Facade,
    range_token: str | None = Query(
        None,
        alias="range",
        description="7d, 30d or 90d; anything else means 7d",
    ),
) -> FormAnalyticsResponse:
    """
    Get the analytics report for a form the caller owns.

    Path Parameters:
        - form_id: The form identifier

    Query Parameters:
        - range: 7d (default), 30d or 90d

    Returns:
        - formId, range, startDate, endDate
        - analytics: overview, submissionsByDate, fieldAnalytics,
          deviceAnalytics, geographicData
    """
    return await facade.form_report(form_id, user_id, range_token)
