# services/safety_service.py
import logging
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from experiment_engine.models.orm.experiment import ExperimentStatus
from experiment_engine.models.schemas.experiment import HarmCheckResult, HarmThreshold
from experiment_engine.repositories.experiment_repo import ExperimentRepository
from experiment_engine.services.results_service import ResultsService

logger = logging.getLogger(__name__)


def parse_harm_threshold(raw) -> Optional[HarmThreshold]:
    """The stored threshold blob, or None when absent or malformed."""
    if not raw:
        return None
    try:
        return HarmThreshold.model_validate(raw)
    except ValidationError:
        return None


class SafetyService:
    """
    Auto-stops RUNNING experiments whose worst variant falls below the
    configured harm floor. Invoked by an external scheduler; schedules nothing.
    """

    def __init__(self, db: Session):
        self.experiment_repo = ExperimentRepository(db)
        self.results_service = ResultsService(db)

    def check_harm_and_auto_stop(self, experiment_id: str) -> HarmCheckResult:
        experiment = self.experiment_repo.get_experiment(experiment_id)
        if experiment is None or experiment.status != ExperimentStatus.RUNNING:
            return HarmCheckResult(experiment_id=experiment_id, stopped=False)

        threshold = parse_harm_threshold(experiment.harm_threshold)
        if threshold is None:
            if experiment.harm_threshold:
                logger.warning(
                    f"Experiment {experiment_id} has a malformed harm threshold; skipping"
                )
            return HarmCheckResult(experiment_id=experiment_id, stopped=False)

        # An unobserved variant counts as mean 0, as in the results summary.
        # With no observations at all there is nothing to judge yet.
        means = self.results_service.metric_means(experiment_id, threshold.metric)
        if all(mean is None for mean in means.values()):
            return HarmCheckResult(experiment_id=experiment_id, stopped=False)

        worst = min(0.0 if mean is None else mean for mean in means.values())
        if worst >= threshold.min_value:
            return HarmCheckResult(experiment_id=experiment_id, stopped=False)

        stopped = self.experiment_repo.set_status(
            experiment_id, ExperimentStatus.STOPPED, from_statuses=[ExperimentStatus.RUNNING]
        )
        if not stopped:
            # Someone else stopped it between the read and the update.
            return HarmCheckResult(experiment_id=experiment_id, stopped=False)

        reason = f"{threshold.metric} below {threshold.min_value} (worst variant mean {worst})"
        logger.warning(f"Auto-stopped experiment {experiment_id}: {reason}")
        return HarmCheckResult(experiment_id=experiment_id, stopped=True, reason=reason)

    def check_all_running(self) -> list[HarmCheckResult]:
        """
        Runs the harm check over every currently RUNNING experiment. A failing
        experiment is logged and skipped so the rest are still checked.
        """
        results = []
        for experiment in self.experiment_repo.list_by_status(ExperimentStatus.RUNNING):
            experiment_id = experiment.experiment_id
            try:
                results.append(self.check_harm_and_auto_stop(experiment_id))
            except (RuntimeError, ValueError, SQLAlchemyError):
                logger.exception(f"Harm check failed for experiment {experiment_id}")
        return results
