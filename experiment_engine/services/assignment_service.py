# services/assignment_service.py
"""
Deterministic 50/50 bucketing of entities into variant A or B.

The hash below is fixed for the lifetime of the system. Changing it would
re-bucket every entity and corrupt in-flight experiments, so any new
algorithm must ship under a new HASH_VERSION; rows carry the version they
were written with.
"""

import hashlib
import logging

from sqlalchemy.orm import Session

from experiment_engine.core.exceptions import ExperimentNotFoundError
from experiment_engine.repositories.assignment_repo import AssignmentRepository
from experiment_engine.repositories.experiment_repo import ExperimentRepository

logger = logging.getLogger(__name__)

HASH_VERSION = "sha256-v1"

VARIANT_A = "A"
VARIANT_B = "B"


def hash_to_variant(experiment_id: str, entity_id: str) -> str:
    """
    Maps an (experiment, entity) pair to a variant: even -> A, odd -> B.

    Same inputs always give the same variant, independent of process,
    call order, or load.
    """
    key = f"{experiment_id}:{entity_id}"
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
    return VARIANT_A if int(digest[:16], 16) % 2 == 0 else VARIANT_B


class AssignmentService:
    def __init__(self, db: Session):
        self.assignment_repo = AssignmentRepository(db)
        self.experiment_repo = ExperimentRepository(db)

    def get_variant(self, experiment_id: str, entity_id: str) -> str:
        """
        Returns the entity's variant, assigning it on first lookup.

        1. An existing assignment is returned unchanged, with no writes.
        2. Otherwise the variant is computed by hash_to_variant.
        3. It is persisted with insert-if-absent; the stored row is the answer.
        """
        existing = self.assignment_repo.get_assignment(experiment_id, entity_id)
        if existing is not None:
            logger.debug(
                f"Entity {entity_id} already assigned to {existing.variant} in {experiment_id}"
            )
            return existing.variant

        if self.experiment_repo.get_experiment(experiment_id) is None:
            raise ExperimentNotFoundError(experiment_id)

        variant = hash_to_variant(experiment_id, entity_id)
        stored = self.assignment_repo.insert_if_absent(
            experiment_id=experiment_id,
            entity_id=entity_id,
            variant=variant,
            hash_version=HASH_VERSION,
        )
        logger.info(f"Assigned entity {entity_id} to variant {stored.variant} in {experiment_id}")
        return stored.variant

    def get_assignment(self, experiment_id: str, entity_id: str):
        """Ensures the assignment exists and returns the stored row."""
        self.get_variant(experiment_id, entity_id)
        return self.assignment_repo.get_assignment(experiment_id, entity_id)
