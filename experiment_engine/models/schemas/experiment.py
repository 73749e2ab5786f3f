from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from experiment_engine.models.orm.experiment import ExperimentStatus

VariantName = Literal["A", "B"]

# Advisory option lists for the admin surface; not enforced.
EXPERIMENT_CATEGORIES = ["pricing", "messaging", "ops", "incentives", "booking_flow"]
PRIMARY_METRICS = [
    "conversion",
    "conversion_rate",
    "revenue_per_booking",
    "margin",
    "margin_pct",
    "SLA",
    "sla_quality",
]
SECONDARY_METRICS = ["complaints", "cancellations"]


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _strip_or_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class HarmThreshold(BaseModel):
    """Safety floor: auto-stop when the worst variant's mean drops below min_value."""

    metric: str = Field(..., min_length=1)
    min_value: float = Field(..., alias="minValue")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("metric")
    @classmethod
    def strip_metric(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("metric must not be blank")
        return value


class ExperimentCreateModel(BaseModel):
    """Admin input for a new experiment. Status is always STOPPED on create."""

    name: str = Field(..., min_length=1)
    hypothesis: Optional[str] = None
    category: Optional[str] = Field(None, description="e.g. 'pricing', 'messaging'")
    variant_a: Any = Field(None, alias="variantA", description="Opaque config for A.")
    variant_b: Any = Field(None, alias="variantB", description="Opaque config for B.")
    metric: str = Field(..., min_length=1, description="Primary metric name")
    secondary_metric: Optional[str] = Field(None, alias="secondaryMetric")
    start_at: datetime = Field(..., alias="startAt")
    end_at: datetime = Field(..., alias="endAt")
    harm_threshold: Optional[HarmThreshold] = Field(None, alias="harmThreshold")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name", "metric")
    @classmethod
    def strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("hypothesis", "category", "secondary_metric")
    @classmethod
    def strip_optional(cls, value: Optional[str]) -> Optional[str]:
        return _strip_or_none(value)

    @field_validator("start_at", "end_at")
    @classmethod
    def normalize_time(cls, value: datetime) -> datetime:
        return _naive_utc(value)

    @model_validator(mode="after")
    def check_window(self):
        if self.end_at < self.start_at:
            raise ValueError("endAt must not be before startAt")
        return self


class ExperimentUpdateModel(BaseModel):
    """Partial update; only fields explicitly sent are applied."""

    name: Optional[str] = None
    hypothesis: Optional[str] = None
    category: Optional[str] = None
    variant_a: Any = Field(None, alias="variantA")
    variant_b: Any = Field(None, alias="variantB")
    metric: Optional[str] = None
    secondary_metric: Optional[str] = Field(None, alias="secondaryMetric")
    start_at: Optional[datetime] = Field(None, alias="startAt")
    end_at: Optional[datetime] = Field(None, alias="endAt")
    harm_threshold: Optional[HarmThreshold] = Field(None, alias="harmThreshold")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("hypothesis", "category", "secondary_metric")
    @classmethod
    def strip_optional(cls, value: Optional[str]) -> Optional[str]:
        return _strip_or_none(value)

    @field_validator("name", "metric")
    @classmethod
    def strip_required(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("start_at", "end_at")
    @classmethod
    def normalize_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _naive_utc(value)

    def changed_fields(self) -> dict:
        """Column values for the fields the caller actually set."""
        fields = self.model_dump(exclude_unset=True, by_alias=False)
        if "harm_threshold" in fields and self.harm_threshold is not None:
            fields["harm_threshold"] = self.harm_threshold.model_dump(by_alias=True)
        for required in ("name", "metric", "start_at", "end_at"):
            if required in fields and fields[required] is None:
                del fields[required]
        return fields


class ExperimentResponseModel(BaseModel):
    experiment_id: str = Field(..., description="Unique ID for the experiment.")
    name: str
    hypothesis: Optional[str] = None
    category: Optional[str] = None
    variant_a: Any = None
    variant_b: Any = None
    metric: str
    secondary_metric: Optional[str] = None
    start_at: datetime
    end_at: datetime
    status: ExperimentStatus
    harm_threshold: Any = None
    winner_variant: Optional[VariantName] = None
    promoted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PromoteWinnerModel(BaseModel):
    variant: VariantName
    mark_promoted: bool = Field(True, alias="markPromoted")

    model_config = ConfigDict(populate_by_name=True)


# --- Consumer-facing resolution ---


class VariantConfigModel(BaseModel):
    variant: VariantName
    config: Any = None


class ActiveExperimentConfigModel(VariantConfigModel):
    experiment_id: str


# --- Reporting ---


class VariantSummary(BaseModel):
    """Aggregates for one arm of an experiment."""

    count: int = Field(..., description="Primary-metric observations for this variant.")
    assignment_count: int = Field(
        ..., description="Distinct entities ever assigned this variant."
    )
    primary_mean: float
    secondary_mean: Optional[float] = None


class ExperimentResultsSummary(BaseModel):
    experiment_id: str
    variant_a: VariantSummary
    variant_b: VariantSummary
    winner: Literal["A", "B", "tie"]
    primary_metric: str
    secondary_metric: Optional[str] = None


class HarmCheckResult(BaseModel):
    experiment_id: Optional[str] = None
    stopped: bool
    reason: Optional[str] = None


class GrowthSnapshot(BaseModel):
    running_count: int
    completed_with_winner: int
    total: int
    generated_at: datetime


class ExperimentOptions(BaseModel):
    categories: List[str] = Field(default_factory=lambda: list(EXPERIMENT_CATEGORIES))
    primary_metrics: List[str] = Field(default_factory=lambda: list(PRIMARY_METRICS))
    secondary_metrics: List[str] = Field(default_factory=lambda: list(SECONDARY_METRICS))
