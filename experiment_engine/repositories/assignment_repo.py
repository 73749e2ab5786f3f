from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from experiment_engine.models.orm.assignment import AssignmentORM

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class AssignmentRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_assignment(self, experiment_id: str, entity_id: str) -> Optional[AssignmentORM]:
        """Retrieves a persistent assignment for an entity in a specific experiment."""
        return self.db.get(AssignmentORM, (experiment_id, entity_id))

    def count_by_variant(self, experiment_id: str, hash_version: str) -> dict[str, int]:
        """Distinct assigned entities per variant, for one hash version."""
        stmt = (
            select(AssignmentORM.variant, func.count())
            .where(
                AssignmentORM.experiment_id == experiment_id,
                AssignmentORM.hash_version == hash_version,
            )
            .group_by(AssignmentORM.variant)
        )
        return {variant: count for variant, count in self.db.execute(stmt).all()}

    def count_other_versions(self, experiment_id: str, hash_version: str) -> int:
        stmt = select(func.count()).where(
            AssignmentORM.experiment_id == experiment_id,
            AssignmentORM.hash_version != hash_version,
        )
        return self.db.scalar(stmt) or 0

    def insert_if_absent(
        self, experiment_id: str, entity_id: str, variant: str, hash_version: str
    ) -> AssignmentORM:
        """
        Persists an assignment unless one already exists for the pair, and
        returns whichever row is stored. Under concurrent first-touch the
        first committed row wins and every caller reads it back.
        """
        values = {
            "experiment_id": experiment_id,
            "entity_id": entity_id,
            "variant": variant,
            "hash_version": hash_version,
            "assigned_at": datetime.utcnow(),
        }
        insert = _UPSERT_DIALECTS.get(self.db.get_bind().dialect.name)

        try:
            if insert is not None:
                stmt = (
                    insert(AssignmentORM)
                    .values(**values)
                    .on_conflict_do_nothing(index_elements=["experiment_id", "entity_id"])
                )
                self.db.execute(stmt)
                self.db.commit()
            else:
                self.db.add(AssignmentORM(**values))
                self.db.commit()
        except IntegrityError:
            # Lost the race on a dialect without ON CONFLICT; the winner's row stands.
            self.db.rollback()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RuntimeError(f"Exception occurred during assignment creation: {e}")

        self.db.expire_all()
        return self.get_assignment(experiment_id, entity_id)
