"""Tests for the experiment lifecycle state machine."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from experiment_engine.core.exceptions import ExperimentNotFoundError, InvalidTransitionError
from experiment_engine.models.orm.experiment import ExperimentStatus
from experiment_engine.models.schemas.experiment import ExperimentCreateModel, ExperimentUpdateModel
from experiment_engine.repositories.experiment_repo import ExperimentRepository
from experiment_engine.services.experiment_service import ExperimentService


def test_create_is_always_stopped(db, make_experiment):
    experiment = make_experiment(name="  Pricing Test A  ", category=" pricing ", hypothesis="")

    assert experiment.status == ExperimentStatus.STOPPED
    assert experiment.name == "Pricing Test A"
    assert experiment.category == "pricing"
    assert experiment.hypothesis is None
    assert experiment.variant_b == {"discount": 0.10}


def test_create_rejects_inverted_window():
    now = datetime.utcnow()
    with pytest.raises(ValueError):
        ExperimentCreateModel(
            name="Bad window",
            metric="conversion_rate",
            start_at=now,
            end_at=now - timedelta(days=1),
        )


def test_create_stores_harm_threshold_blob(db, make_experiment):
    experiment = make_experiment(harm_threshold={"metric": "conversion_rate", "minValue": 0.1})
    assert experiment.harm_threshold == {"metric": "conversion_rate", "minValue": 0.1}


def test_start_and_stop(db, make_experiment):
    service = ExperimentService(db)
    experiment = make_experiment()

    assert service.start_experiment(experiment.experiment_id).status == ExperimentStatus.RUNNING
    assert service.stop_experiment(experiment.experiment_id).status == ExperimentStatus.STOPPED


def test_start_running_is_rejected(db, make_experiment):
    service = ExperimentService(db)
    experiment = make_experiment()
    service.start_experiment(experiment.experiment_id)

    with pytest.raises(InvalidTransitionError):
        service.start_experiment(experiment.experiment_id)


def test_start_complete_is_rejected(db, make_experiment):
    service = ExperimentService(db)
    experiment = make_experiment()
    service.complete_experiment(experiment.experiment_id)

    with pytest.raises(InvalidTransitionError):
        service.start_experiment(experiment.experiment_id)


def test_stop_requires_running(db, make_experiment):
    service = ExperimentService(db)
    experiment = make_experiment()

    with pytest.raises(InvalidTransitionError):
        service.stop_experiment(experiment.experiment_id)


def test_stop_does_not_reopen_complete(db, make_experiment):
    service = ExperimentService(db)
    experiment = make_experiment()
    service.complete_experiment(experiment.experiment_id)

    with pytest.raises(InvalidTransitionError):
        service.stop_experiment(experiment.experiment_id)
    assert service.get_experiment(experiment.experiment_id).status == ExperimentStatus.COMPLETE


def test_start_stops_other_experiment_in_category(db, make_experiment):
    service = ExperimentService(db)
    x = make_experiment(name="X")
    y = make_experiment(name="Y")
    service.start_experiment(y.experiment_id)

    service.start_experiment(x.experiment_id)

    assert service.get_experiment(x.experiment_id).status == ExperimentStatus.RUNNING
    assert service.get_experiment(y.experiment_id).status == ExperimentStatus.STOPPED


def test_no_exclusion_without_category(db, make_experiment):
    service = ExperimentService(db)
    first = make_experiment(name="First", category=None)
    second = make_experiment(name="Second", category=None)

    service.start_experiment(first.experiment_id)
    service.start_experiment(second.experiment_id)

    assert service.get_experiment(first.experiment_id).status == ExperimentStatus.RUNNING
    assert service.get_experiment(second.experiment_id).status == ExperimentStatus.RUNNING


def test_start_retries_after_concurrent_start(db, make_experiment, monkeypatch):
    experiment = make_experiment()
    original = ExperimentRepository.start_exclusive
    calls = []

    def flaky_start(self, experiment_id, category):
        calls.append(experiment_id)
        if len(calls) == 1:
            raise IntegrityError("UPDATE experiments", {}, Exception("duplicate running category"))
        return original(self, experiment_id, category)

    monkeypatch.setattr(ExperimentRepository, "start_exclusive", flaky_start)

    started = ExperimentService(db).start_experiment(experiment.experiment_id)

    assert started.status == ExperimentStatus.RUNNING
    assert len(calls) == 2


def test_complete_from_any_status(db, make_experiment):
    service = ExperimentService(db)
    stopped = make_experiment(name="Stopped")
    running = make_experiment(name="Running", category="ops")
    service.start_experiment(running.experiment_id)

    assert service.complete_experiment(stopped.experiment_id).status == ExperimentStatus.COMPLETE
    assert service.complete_experiment(running.experiment_id).status == ExperimentStatus.COMPLETE
    assert service.complete_experiment(running.experiment_id).status == ExperimentStatus.COMPLETE


def test_promote_winner(db, make_experiment):
    service = ExperimentService(db)
    experiment = make_experiment()
    service.start_experiment(experiment.experiment_id)

    promoted = service.promote_winner(experiment.experiment_id, "B", True)

    assert promoted.winner_variant == "B"
    assert promoted.promoted_at is not None
    assert promoted.status == ExperimentStatus.RUNNING

    unmarked = service.promote_winner(experiment.experiment_id, "A", False)
    assert unmarked.winner_variant == "A"
    assert unmarked.promoted_at is None


def test_update_while_stopped(db, make_experiment):
    service = ExperimentService(db)
    experiment = make_experiment()

    updated = service.update_experiment(
        experiment.experiment_id,
        ExperimentUpdateModel(variantB={"discount": 0.15}, secondaryMetric="cancellations"),
    )

    assert updated.variant_b == {"discount": 0.15}
    assert updated.secondary_metric == "cancellations"
    assert updated.variant_a == {"discount": 0}


def test_update_running_is_rejected_and_unchanged(db, make_experiment):
    service = ExperimentService(db)
    experiment = make_experiment()
    service.start_experiment(experiment.experiment_id)
    before = service.get_experiment(experiment.experiment_id).to_dict()

    with pytest.raises(InvalidTransitionError):
        service.update_experiment(
            experiment.experiment_id,
            ExperimentUpdateModel(variantA={"discount": 0.5}, metric="margin"),
        )

    db.expire_all()
    assert service.get_experiment(experiment.experiment_id).to_dict() == before


def test_update_complete_is_rejected(db, make_experiment):
    service = ExperimentService(db)
    experiment = make_experiment()
    service.complete_experiment(experiment.experiment_id)

    with pytest.raises(InvalidTransitionError):
        service.update_experiment(experiment.experiment_id, ExperimentUpdateModel(name="Renamed"))


def test_unknown_experiment_operations(db):
    service = ExperimentService(db)
    for operation in (
        lambda: service.get_experiment("missing"),
        lambda: service.start_experiment("missing"),
        lambda: service.stop_experiment("missing"),
        lambda: service.complete_experiment("missing"),
        lambda: service.promote_winner("missing", "A"),
        lambda: service.update_experiment("missing", ExperimentUpdateModel(name="x")),
    ):
        with pytest.raises(ExperimentNotFoundError):
            operation()


def test_list_and_snapshot(db, make_experiment):
    service = ExperimentService(db)
    running = make_experiment(name="Running")
    done = make_experiment(name="Done", category="ops")
    make_experiment(name="Idle", category="messaging")
    service.start_experiment(running.experiment_id)
    service.promote_winner(done.experiment_id, "A")
    service.complete_experiment(done.experiment_id)

    assert len(service.list_experiments()) == 3
    snapshot = service.get_growth_snapshot()
    assert snapshot.total == 3
    assert snapshot.running_count == 1
    assert snapshot.completed_with_winner == 1
