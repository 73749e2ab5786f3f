import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from experiment_engine.models.orm.outcome import OutcomeORM
from experiment_engine.models.schemas.outcome import OutcomeCreateModel


class OutcomeRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def create_outcome(self, outcome_data: OutcomeCreateModel, hash_version: str) -> OutcomeORM:
        """
        Appends one outcome row. Outcomes are never updated or deduplicated.
        """
        outcome_dict = outcome_data.model_dump(by_alias=False)
        outcome_dict["outcome_id"] = str(uuid.uuid4())
        outcome_dict["hash_version"] = hash_version
        if outcome_dict.get("observed_at") is None:
            outcome_dict["observed_at"] = datetime.utcnow()

        db_outcome = OutcomeORM(**outcome_dict)
        try:
            self.db.add(db_outcome)
            self.db.commit()
            self.db.refresh(db_outcome)

        except IntegrityError as e:
            self.db.rollback()
            raise ValueError(
                f"Invalid outcome data: a foreign key reference is invalid. "
                f"Details: {str(e).splitlines()[0]}"
            )

        except OperationalError as e:
            self.db.rollback()
            raise RuntimeError(f"Database connection failed recording outcome: {e}")

        except SQLAlchemyError as e:
            self.db.rollback()
            raise RuntimeError(f"Unexpected database error recording outcome: {e}")

        return db_outcome

    def get_outcomes_for_experiment(self, experiment_id: str, **kwargs) -> list[OutcomeORM]:
        """
        Retrieves outcomes for an experiment, with optional variant and
        metric filters.
        """
        stmt = select(OutcomeORM).where(OutcomeORM.experiment_id == experiment_id)

        if variant := kwargs.get("variant"):
            stmt = stmt.where(OutcomeORM.variant == variant)

        if metric := kwargs.get("metric"):
            stmt = stmt.where(OutcomeORM.metric == metric)

        return list(self.db.scalars(stmt).all())

    def aggregate_by_variant(
        self, experiment_id: str, metric: str, hash_version: str
    ) -> dict[str, tuple[int, float]]:
        """(observation count, sum of values) per variant for one metric."""
        stmt = (
            select(OutcomeORM.variant, func.count(), func.sum(OutcomeORM.value))
            .where(
                OutcomeORM.experiment_id == experiment_id,
                OutcomeORM.metric == metric,
                OutcomeORM.hash_version == hash_version,
            )
            .group_by(OutcomeORM.variant)
        )
        return {
            variant: (count, float(total or 0.0))
            for variant, count, total in self.db.execute(stmt).all()
        }

    def count_other_versions(self, experiment_id: str, hash_version: str) -> int:
        stmt = select(func.count()).where(
            OutcomeORM.experiment_id == experiment_id,
            OutcomeORM.hash_version != hash_version,
        )
        return self.db.scalar(stmt) or 0
