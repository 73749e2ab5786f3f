from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, PrimaryKeyConstraint, String

from .base import Base


class AssignmentORM(Base):
    __tablename__ = "experiment_assignments"

    experiment_id = Column(
        String, ForeignKey("experiments.experiment_id"), nullable=False, index=True
    )
    entity_id = Column(String, nullable=False, index=True)

    # "A" or "B"; written once, never updated.
    variant = Column(String(1), nullable=False)
    hash_version = Column(String, nullable=False)

    assigned_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("experiment_id", "entity_id", name="experiment_assignment_pk"),
    )
