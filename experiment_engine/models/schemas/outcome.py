from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from experiment_engine.models.schemas.experiment import VariantName


class OutcomeCreateModel(BaseModel):
    """Schema for recording one metric observation (API Input)."""

    experiment_id: str = Field(..., alias="experimentId")
    entity_id: str = Field(..., alias="entityId")
    variant: VariantName
    metric: str = Field(..., min_length=1, description="e.g. 'revenue_per_booking'")
    value: float
    # The server stamps the time when omitted.
    observed_at: Optional[datetime] = Field(None, alias="observedAt")

    model_config = ConfigDict(populate_by_name=True)


class OutcomeResponseModel(BaseModel):
    outcome_id: str
    experiment_id: str
    variant: VariantName
    metric: str
    value: float
    observed_at: datetime

    model_config = ConfigDict(from_attributes=True)
