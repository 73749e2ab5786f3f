from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from experiment_engine.models.schemas.experiment import VariantName


class AssignmentModel(BaseModel):
    """Data model for a persistent entity assignment record."""

    experiment_id: str
    entity_id: str
    variant: VariantName = Field(..., description="The variant the entity was bucketed into.")
    hash_version: str
    assigned_at: datetime

    model_config = ConfigDict(from_attributes=True)
