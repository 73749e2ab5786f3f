import logging
import uuid
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from experiment_engine.models.orm.experiment import ExperimentORM, ExperimentStatus
from experiment_engine.models.schemas.experiment import ExperimentCreateModel

logger = logging.getLogger(__name__)


class ExperimentRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def create_experiment(self, experiment_data: ExperimentCreateModel) -> ExperimentORM:
        """
        Inserts a new experiment. The status is forced to STOPPED regardless
        of input; experiments are never created RUNNING.
        """
        experiment_dict = experiment_data.model_dump(exclude={"harm_threshold"})
        experiment_dict["experiment_id"] = str(uuid.uuid4())
        experiment_dict["status"] = ExperimentStatus.STOPPED
        if experiment_data.harm_threshold is not None:
            experiment_dict["harm_threshold"] = experiment_data.harm_threshold.model_dump(
                by_alias=True
            )

        db_experiment = ExperimentORM(**experiment_dict)
        try:
            self.db.add(db_experiment)
            self.db.commit()
            self.db.refresh(db_experiment)
        except IntegrityError as e:
            self.db.rollback()
            raise ValueError(f"Database integrity error: {str(e).splitlines()[0]}")
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RuntimeError(f"A database error occurred during experiment creation: {e}")

        return db_experiment

    def get_experiment(self, experiment_id: str) -> Optional[ExperimentORM]:
        return self.db.get(ExperimentORM, experiment_id)

    def list_experiments(self) -> list[ExperimentORM]:
        stmt = select(ExperimentORM).order_by(
            ExperimentORM.status.asc(), ExperimentORM.start_at.desc()
        )
        return list(self.db.scalars(stmt).all())

    def list_by_status(self, status: ExperimentStatus) -> list[ExperimentORM]:
        stmt = select(ExperimentORM).where(ExperimentORM.status == status)
        return list(self.db.scalars(stmt).all())

    def get_active_experiments(
        self, now: datetime, category: Optional[str] = None
    ) -> list[ExperimentORM]:
        """RUNNING experiments whose [start_at, end_at] window contains `now`."""
        stmt = select(ExperimentORM).where(
            ExperimentORM.status == ExperimentStatus.RUNNING,
            ExperimentORM.start_at <= now,
            ExperimentORM.end_at >= now,
        )
        if category:
            stmt = stmt.where(ExperimentORM.category == category)
        stmt = stmt.order_by(ExperimentORM.start_at.desc())
        return list(self.db.scalars(stmt).all())

    def _conditional_update(
        self,
        experiment_id: str,
        values: dict,
        from_statuses: Optional[Iterable[ExperimentStatus]] = None,
    ) -> bool:
        """
        Applies `values` in a single UPDATE guarded by the current status.
        Returns False (and changes nothing) when no row matched.
        """
        stmt = update(ExperimentORM).where(ExperimentORM.experiment_id == experiment_id)
        if from_statuses is not None:
            stmt = stmt.where(ExperimentORM.status.in_(list(from_statuses)))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        try:
            result = self.db.execute(stmt)
            if result.rowcount == 0:
                self.db.rollback()
                return False
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ValueError(f"Database integrity error: {str(e).splitlines()[0]}")
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RuntimeError(f"A database error occurred updating experiment: {e}")

        self.db.expire_all()
        return True

    def update_if_stopped(self, experiment_id: str, fields: dict) -> bool:
        return self._conditional_update(
            experiment_id, fields, from_statuses=[ExperimentStatus.STOPPED]
        )

    def set_status(
        self,
        experiment_id: str,
        status: ExperimentStatus,
        from_statuses: Optional[Iterable[ExperimentStatus]] = None,
    ) -> bool:
        return self._conditional_update(experiment_id, {"status": status}, from_statuses)

    def set_winner(
        self, experiment_id: str, variant: str, promoted_at: Optional[datetime]
    ) -> bool:
        return self._conditional_update(
            experiment_id, {"winner_variant": variant, "promoted_at": promoted_at}
        )

    def start_exclusive(self, experiment_id: str, category: Optional[str]) -> bool:
        """
        Moves one experiment STOPPED -> RUNNING, first stopping any other
        RUNNING experiment in the same category, all in one transaction.

        The category's rows are locked (SELECT ... FOR UPDATE) so concurrent
        starters serialize; the partial unique index on RUNNING categories is
        the backstop and surfaces as IntegrityError to the caller.
        """
        try:
            if category is not None:
                self.db.execute(
                    select(ExperimentORM.experiment_id)
                    .where(ExperimentORM.category == category)
                    .with_for_update()
                ).all()
                stopped = self.db.execute(
                    update(ExperimentORM)
                    .where(
                        ExperimentORM.category == category,
                        ExperimentORM.status == ExperimentStatus.RUNNING,
                        ExperimentORM.experiment_id != experiment_id,
                    )
                    .values(status=ExperimentStatus.STOPPED)
                    .execution_options(synchronize_session=False)
                )
                if stopped.rowcount:
                    logger.info(
                        f"Stopped {stopped.rowcount} running experiment(s) in category "
                        f"'{category}' to start {experiment_id}"
                    )

            started = self.db.execute(
                update(ExperimentORM)
                .where(
                    ExperimentORM.experiment_id == experiment_id,
                    ExperimentORM.status == ExperimentStatus.STOPPED,
                )
                .values(status=ExperimentStatus.RUNNING)
                .execution_options(synchronize_session=False)
            )
            if started.rowcount == 0:
                self.db.rollback()
                return False
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RuntimeError(f"A database error occurred starting experiment: {e}")

        self.db.expire_all()
        return True
