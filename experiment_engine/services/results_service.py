# services/results_service.py
import logging
from typing import Optional

from sqlalchemy.orm import Session

from experiment_engine.core.exceptions import ExperimentNotFoundError
from experiment_engine.models.schemas.experiment import (
    ExperimentResultsSummary,
    VariantSummary,
)
from experiment_engine.repositories.assignment_repo import AssignmentRepository
from experiment_engine.repositories.experiment_repo import ExperimentRepository
from experiment_engine.repositories.outcome_repo import OutcomeRepository
from experiment_engine.services.assignment_service import HASH_VERSION, VARIANT_A, VARIANT_B

logger = logging.getLogger(__name__)

VARIANTS = (VARIANT_A, VARIANT_B)


def _mean(count: int, total: float) -> Optional[float]:
    return total / count if count else None


def pick_winner(stats: dict[str, tuple[int, float]]) -> str:
    """
    Higher primary-metric mean wins. Equal means, or a variant with no
    observations, is a tie.

    NOTE: always "higher is better"; lower-is-better metrics such as
    complaint rate are not supported here.
    """
    a_count, a_total = stats.get(VARIANT_A, (0, 0.0))
    b_count, b_total = stats.get(VARIANT_B, (0, 0.0))
    if not a_count or not b_count:
        return "tie"

    a_mean, b_mean = a_total / a_count, b_total / b_count
    if a_mean > b_mean:
        return VARIANT_A
    if b_mean > a_mean:
        return VARIANT_B
    return "tie"


class ResultsService:
    def __init__(self, db: Session):
        self.experiment_repo = ExperimentRepository(db)
        self.assignment_repo = AssignmentRepository(db)
        self.outcome_repo = OutcomeRepository(db)

    def metric_stats(self, experiment_id: str, metric: str) -> dict[str, tuple[int, float]]:
        """(count, sum) per variant for `metric`, current hash version only."""
        return self.outcome_repo.aggregate_by_variant(experiment_id, metric, HASH_VERSION)

    def metric_means(self, experiment_id: str, metric: str) -> dict[str, Optional[float]]:
        """Mean per variant for `metric`; None for a variant with no observations."""
        stats = self.metric_stats(experiment_id, metric)
        return {variant: _mean(*stats.get(variant, (0, 0.0))) for variant in VARIANTS}

    def _warn_on_foreign_versions(self, experiment_id: str) -> None:
        excluded_assignments = self.assignment_repo.count_other_versions(
            experiment_id, HASH_VERSION
        )
        excluded_outcomes = self.outcome_repo.count_other_versions(experiment_id, HASH_VERSION)
        if excluded_assignments or excluded_outcomes:
            logger.warning(
                f"Experiment {experiment_id}: excluded {excluded_assignments} assignment(s) and "
                f"{excluded_outcomes} outcome(s) not bucketed with {HASH_VERSION}"
            )

    def get_results_summary(self, experiment_id: str) -> ExperimentResultsSummary:
        """
        Per-variant population size, primary and secondary means, and the
        point-in-time winner.

        Reads whatever outcomes have landed so far; repeated calls may see
        growing counts.
        """
        experiment = self.experiment_repo.get_experiment(experiment_id)
        if experiment is None:
            raise ExperimentNotFoundError(experiment_id)

        self._warn_on_foreign_versions(experiment_id)

        primary = experiment.metric
        secondary = experiment.secondary_metric

        assignment_counts = self.assignment_repo.count_by_variant(experiment_id, HASH_VERSION)
        primary_stats = self.metric_stats(experiment_id, primary)
        secondary_stats = self.metric_stats(experiment_id, secondary) if secondary else {}

        summaries = {}
        for variant in VARIANTS:
            count, total = primary_stats.get(variant, (0, 0.0))
            summaries[variant] = VariantSummary(
                count=count,
                assignment_count=assignment_counts.get(variant, 0),
                primary_mean=_mean(count, total) or 0.0,
                secondary_mean=_mean(*secondary_stats.get(variant, (0, 0.0))),
            )

        return ExperimentResultsSummary(
            experiment_id=experiment_id,
            variant_a=summaries[VARIANT_A],
            variant_b=summaries[VARIANT_B],
            winner=pick_winner(primary_stats),
            primary_metric=primary,
            secondary_metric=secondary,
        )
