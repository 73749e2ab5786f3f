from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, String

from .base import Base


class OutcomeORM(Base):
    __tablename__ = "experiment_outcomes"

    outcome_id = Column(String, primary_key=True)

    experiment_id = Column(
        String, ForeignKey("experiments.experiment_id"), nullable=False, index=True
    )
    entity_id = Column(String, nullable=False, index=True)

    # Stamped at write time, never re-derived from assignments.
    variant = Column(String(1), nullable=False)
    hash_version = Column(String, nullable=False)

    metric = Column(String, nullable=False)
    value = Column(Float, nullable=False)

    observed_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("ix_experiment_outcomes_experiment_metric", "experiment_id", "metric"),
    )
