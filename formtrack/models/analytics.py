"""Pydantic response models for the analytics report.

Keys are serialised in camelCase, the shape the dashboard consumes.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnalyticsOverview(CamelModel):
    """Headline KPIs for the window."""

    total_submissions: int = 0
    total_views: int = 0
    conversion_rate: float = 0.0
    average_completion_time: float = 0.0
    bounce_rate: float = 0.0


class DailyActivity(CamelModel):
    """Views and submissions on one UTC calendar day."""

    date: str
    submissions: int = 0
    views: int = 0


class FieldAnalytics(CamelModel):
    """Funnel metrics for one form field."""

    field_id: str
    field_label: str
    focus_count: int = 0
    blur_count: int = 0
    completion_rate: float = 0.0
    drop_off_rate: float = 0.0
    average_time: float = 0.0


class DeviceAnalytics(CamelModel):
    """Share of sessions per device class, in percent."""

    desktop: float = 0.0
    mobile: float = 0.0
    tablet: float = 0.0


class GeoBreakdown(CamelModel):
    """Submissions per country."""

    country: str
    submissions: int
    percentage: float


class FormAnalyticsReport(CamelModel):
    overview: AnalyticsOverview = Field(default_factory=AnalyticsOverview)
    submissions_by_date: list[DailyActivity] = Field(default_factory=list)
    field_analytics: list[FieldAnalytics] = Field(default_factory=list)
    device_analytics: DeviceAnalytics = Field(default_factory=DeviceAnalytics)
    geographic_data: list[GeoBreakdown] = Field(default_factory=list)


class FormAnalyticsResponse(CamelModel):
    """Response model for GET /analytics/{form_id}."""

    form_id: str
    range: str
    start_date: datetime
    end_date: datetime
    analytics: FormAnalyticsReport
