import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, Index, String, Text, text

from .base import Base
from .types import JSON_TYPE


class ExperimentStatus(enum.Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"


# --- Experiment Model ---
class ExperimentORM(Base):
    __tablename__ = "experiments"

    # --- Core Identifiers ---
    experiment_id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    hypothesis = Column(Text, nullable=True)

    # Mutual-exclusion key: at most one RUNNING experiment per category.
    category = Column(String, nullable=True, index=True)

    # --- Variant payloads, interpreted only by the consuming module ---
    variant_a = Column(JSON_TYPE, nullable=True)
    variant_b = Column(JSON_TYPE, nullable=True)

    # --- Metrics ---
    metric = Column(String, nullable=False)
    secondary_metric = Column(String, nullable=True)

    # --- Timing ---
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)

    # --- Lifecycle ---
    status = Column(
        Enum(ExperimentStatus, name="experiment_status"),
        default=ExperimentStatus.STOPPED,
        nullable=False,
        index=True,
    )

    # {"metric": str, "minValue": number}
    harm_threshold = Column(JSON_TYPE, nullable=True)

    winner_variant = Column(String(1), nullable=True)
    promoted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index(
            "uq_experiments_running_category",
            "category",
            unique=True,
            postgresql_where=text("status = 'RUNNING'"),
            sqlite_where=text("status = 'RUNNING'"),
        ),
    )
