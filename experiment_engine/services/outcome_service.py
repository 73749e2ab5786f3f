# services/outcome_service.py
import logging

from sqlalchemy.orm import Session

from experiment_engine.models.schemas.outcome import OutcomeCreateModel, OutcomeResponseModel
from experiment_engine.repositories.outcome_repo import OutcomeRepository
from experiment_engine.services.assignment_service import HASH_VERSION

logger = logging.getLogger(__name__)


class OutcomeService:
    def __init__(self, db: Session):
        """Initializes the service with the repositories it needs."""
        self.outcome_repo = OutcomeRepository(db)

    def record_outcome(self, outcome_data: OutcomeCreateModel) -> OutcomeResponseModel:
        """
        Appends one metric observation.

        The variant is taken from the caller as-is (it came from the resolver)
        and stamped on the row together with the current hash version.
        """
        recorded = self.outcome_repo.create_outcome(outcome_data, hash_version=HASH_VERSION)
        logger.debug(
            f"Recorded {recorded.metric}={recorded.value} for {recorded.entity_id} "
            f"({recorded.variant}) in {recorded.experiment_id}"
        )
        return OutcomeResponseModel.model_validate(recorded)

    def record(
        self, experiment_id: str, entity_id: str, variant: str, metric: str, value: float
    ) -> OutcomeResponseModel:
        return self.record_outcome(
            OutcomeCreateModel(
                experiment_id=experiment_id,
                entity_id=entity_id,
                variant=variant,
                metric=metric,
                value=value,
            )
        )
