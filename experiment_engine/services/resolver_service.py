# services/resolver_service.py
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from experiment_engine.models.orm.experiment import ExperimentORM
from experiment_engine.models.schemas.experiment import (
    ActiveExperimentConfigModel,
    VariantConfigModel,
)
from experiment_engine.repositories.experiment_repo import ExperimentRepository
from experiment_engine.services.assignment_service import VARIANT_A, AssignmentService

logger = logging.getLogger(__name__)


class ConfigResolverService:
    """
    Resolves which variant configuration a consuming module should apply.

    Every method degrades to None when there is nothing to apply, so callers
    can always fall back to baseline behaviour.
    """

    def __init__(self, db: Session):
        self.experiment_repo = ExperimentRepository(db)
        self.assignment_service = AssignmentService(db)

    def get_variant_config(
        self, experiment_id: str, entity_id: str
    ) -> Optional[VariantConfigModel]:
        experiment = self.experiment_repo.get_experiment(experiment_id)
        if experiment is None:
            logger.debug(f"Experiment {experiment_id} not found; resolving to baseline")
            return None

        variant = self.assignment_service.get_variant(experiment_id, entity_id)
        config = experiment.variant_a if variant == VARIANT_A else experiment.variant_b
        return VariantConfigModel(variant=variant, config=config)

    def get_active_experiments(self, category: Optional[str] = None) -> list[ExperimentORM]:
        category = category.strip() if category else None
        return self.experiment_repo.get_active_experiments(datetime.utcnow(), category)

    def get_active_experiment_for_category(self, category: str) -> Optional[ExperimentORM]:
        """The single RUNNING, in-window experiment for a category, if any."""
        if not category or not category.strip():
            return None
        active = self.get_active_experiments(category)
        return active[0] if active else None

    def get_active_experiment_config_for_entity(
        self, category: str, entity_id: str
    ) -> Optional[ActiveExperimentConfigModel]:
        """
        Integration point for pricing, messaging, ops and incentive modules:
        returns the entity's variant config for the category's live experiment,
        or None when no experiment is running.
        """
        experiment = self.get_active_experiment_for_category(category)
        if experiment is None:
            return None

        resolved = self.get_variant_config(experiment.experiment_id, entity_id)
        if resolved is None:
            return None
        return ActiveExperimentConfigModel(
            experiment_id=experiment.experiment_id,
            variant=resolved.variant,
            config=resolved.config,
        )
