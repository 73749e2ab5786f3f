# services/experiment_service.py
import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from experiment_engine.core.exceptions import ExperimentNotFoundError, InvalidTransitionError
from experiment_engine.core.settings import config_settings
from experiment_engine.models.orm.experiment import ExperimentORM, ExperimentStatus
from experiment_engine.models.schemas.experiment import (
    ExperimentCreateModel,
    ExperimentUpdateModel,
    GrowthSnapshot,
)
from experiment_engine.repositories.experiment_repo import ExperimentRepository
from experiment_engine.services.assignment_service import VARIANT_A, VARIANT_B

logger = logging.getLogger(__name__)


class ExperimentService:
    """
    Experiment lifecycle: create -> start -> stop / complete -> promote.

        STOPPED --start--> RUNNING --stop--> STOPPED
        any     --complete--> COMPLETE

    Configuration edits are only accepted while STOPPED.
    """

    def __init__(self, db: Session):
        self.experiment_repo = ExperimentRepository(db)
        self.db = db

    def create_experiment(self, experiment_data: ExperimentCreateModel) -> ExperimentORM:
        experiment = self.experiment_repo.create_experiment(experiment_data)
        logger.info(f"Created experiment {experiment.experiment_id} ({experiment.name})")
        return experiment

    def list_experiments(self) -> list[ExperimentORM]:
        return self.experiment_repo.list_experiments()

    def get_experiment(self, experiment_id: str) -> ExperimentORM:
        experiment = self.experiment_repo.get_experiment(experiment_id)
        if experiment is None:
            raise ExperimentNotFoundError(experiment_id)
        return experiment

    def update_experiment(
        self, experiment_id: str, update_data: ExperimentUpdateModel
    ) -> ExperimentORM:
        """
        Applies a partial update. Rejected outright unless the experiment is
        STOPPED; a rejected update leaves every field unchanged.
        """
        experiment = self.get_experiment(experiment_id)
        fields = update_data.changed_fields()
        if not fields:
            if experiment.status != ExperimentStatus.STOPPED:
                raise InvalidTransitionError(experiment_id, experiment.status, "update")
            return experiment

        start_at = fields.get("start_at", experiment.start_at)
        end_at = fields.get("end_at", experiment.end_at)
        if end_at < start_at:
            raise ValueError("endAt must not be before startAt")

        if not self.experiment_repo.update_if_stopped(experiment_id, fields):
            current = self.get_experiment(experiment_id)
            raise InvalidTransitionError(experiment_id, current.status, "update")

        logger.info(f"Updated experiment {experiment_id}: {sorted(fields)}")
        return self.get_experiment(experiment_id)

    def start_experiment(self, experiment_id: str) -> ExperimentORM:
        """
        STOPPED -> RUNNING. Any other RUNNING experiment in the same category
        is stopped in the same transaction.
        """
        for attempt in range(1, config_settings.START_MAX_ATTEMPTS + 1):
            experiment = self.get_experiment(experiment_id)
            if experiment.status != ExperimentStatus.STOPPED:
                raise InvalidTransitionError(experiment_id, experiment.status, "start")

            try:
                started = self.experiment_repo.start_exclusive(experiment_id, experiment.category)
            except IntegrityError:
                # A concurrent start in this category committed first; re-read and retry.
                logger.warning(
                    f"Concurrent start in category '{experiment.category}' while starting "
                    f"{experiment_id} (attempt {attempt})"
                )
                continue

            if not started:
                current = self.get_experiment(experiment_id)
                raise InvalidTransitionError(experiment_id, current.status, "start")

            logger.info(f"Started experiment {experiment_id}")
            return self.get_experiment(experiment_id)

        raise RuntimeError(
            f"Could not start experiment {experiment_id} after "
            f"{config_settings.START_MAX_ATTEMPTS} attempts"
        )

    def stop_experiment(self, experiment_id: str) -> ExperimentORM:
        """RUNNING -> STOPPED."""
        if not self.experiment_repo.set_status(
            experiment_id, ExperimentStatus.STOPPED, from_statuses=[ExperimentStatus.RUNNING]
        ):
            current = self.get_experiment(experiment_id)
            raise InvalidTransitionError(experiment_id, current.status, "stop")

        logger.info(f"Stopped experiment {experiment_id}")
        return self.get_experiment(experiment_id)

    def complete_experiment(self, experiment_id: str) -> ExperimentORM:
        """Manual close-out, allowed from any status."""
        if not self.experiment_repo.set_status(experiment_id, ExperimentStatus.COMPLETE):
            raise ExperimentNotFoundError(experiment_id)

        logger.info(f"Completed experiment {experiment_id}")
        return self.get_experiment(experiment_id)

    def promote_winner(
        self, experiment_id: str, variant: str, mark_promoted: bool = True
    ) -> ExperimentORM:
        """Records the winning variant. Record-keeping only; status is untouched."""
        if variant not in (VARIANT_A, VARIANT_B):
            raise ValueError(f"variant must be 'A' or 'B', got {variant!r}")

        promoted_at = datetime.utcnow() if mark_promoted else None
        if not self.experiment_repo.set_winner(experiment_id, variant, promoted_at):
            raise ExperimentNotFoundError(experiment_id)

        logger.info(f"Promoted variant {variant} as winner of {experiment_id}")
        return self.get_experiment(experiment_id)

    def get_growth_snapshot(self) -> GrowthSnapshot:
        """Counts for the ops dashboard."""
        experiments = self.experiment_repo.list_experiments()
        return GrowthSnapshot(
            running_count=sum(1 for e in experiments if e.status == ExperimentStatus.RUNNING),
            completed_with_winner=sum(
                1
                for e in experiments
                if e.status == ExperimentStatus.COMPLETE and e.winner_variant
            ),
            total=len(experiments),
            generated_at=datetime.utcnow(),
        )
