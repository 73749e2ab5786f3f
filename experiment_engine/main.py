from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Path, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette import status

from experiment_engine.core.db import get_db
from experiment_engine.core.exceptions import ExperimentNotFoundError, InvalidTransitionError
from experiment_engine.core.logging import configure_logging
from experiment_engine.core.settings import config_settings
from experiment_engine.models.schemas.assignment import AssignmentModel
from experiment_engine.models.schemas.experiment import (
    ActiveExperimentConfigModel,
    ExperimentCreateModel,
    ExperimentOptions,
    ExperimentResponseModel,
    ExperimentResultsSummary,
    ExperimentUpdateModel,
    GrowthSnapshot,
    HarmCheckResult,
    PromoteWinnerModel,
    VariantConfigModel,
)
from experiment_engine.models.schemas.outcome import OutcomeCreateModel, OutcomeResponseModel
from experiment_engine.services.assignment_service import AssignmentService
from experiment_engine.services.experiment_service import ExperimentService
from experiment_engine.services.outcome_service import OutcomeService
from experiment_engine.services.resolver_service import ConfigResolverService
from experiment_engine.services.results_service import ResultsService
from experiment_engine.services.safety_service import SafetyService

configure_logging(config_settings.LOG_LEVEL)

app = FastAPI(
    title="Experiment engine",
    description="A/B assignment, outcome aggregation and lifecycle for marketplace experiments",
    version="0.1.0",
)


@app.exception_handler(ExperimentNotFoundError)
async def handle_not_found(request: Request, exc: ExperimentNotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def handle_invalid_transition(request: Request, exc: InvalidTransitionError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def handle_value_error(request: Request, exc: ValueError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


# --- Admin: experiments ---


@app.post(
    "/experiments",
    response_model=ExperimentResponseModel,
    status_code=status.HTTP_201_CREATED,
)
def post_experiments(experiment_data: ExperimentCreateModel, db: Session = Depends(get_db)):
    return ExperimentService(db).create_experiment(experiment_data)


@app.get("/experiments", response_model=list[ExperimentResponseModel])
def list_experiments(db: Session = Depends(get_db)):
    return ExperimentService(db).list_experiments()


@app.get("/experiments/snapshot", response_model=GrowthSnapshot)
def get_growth_snapshot(db: Session = Depends(get_db)):
    return ExperimentService(db).get_growth_snapshot()


@app.get("/experiments/options", response_model=ExperimentOptions)
def get_experiment_options():
    return ExperimentOptions()


@app.post("/experiments/harm-check", response_model=list[HarmCheckResult])
def check_all_running(db: Session = Depends(get_db)):
    """Entry point for the external scheduler."""
    return SafetyService(db).check_all_running()


@app.get("/experiments/{experiment_id}", response_model=ExperimentResponseModel)
def get_experiment(experiment_id: str, db: Session = Depends(get_db)):
    return ExperimentService(db).get_experiment(experiment_id)


@app.patch("/experiments/{experiment_id}", response_model=ExperimentResponseModel)
def patch_experiment(
    experiment_id: str, update_data: ExperimentUpdateModel, db: Session = Depends(get_db)
):
    return ExperimentService(db).update_experiment(experiment_id, update_data)


@app.post("/experiments/{experiment_id}/start", response_model=ExperimentResponseModel)
def start_experiment(experiment_id: str, db: Session = Depends(get_db)):
    return ExperimentService(db).start_experiment(experiment_id)


@app.post("/experiments/{experiment_id}/stop", response_model=ExperimentResponseModel)
def stop_experiment(experiment_id: str, db: Session = Depends(get_db)):
    return ExperimentService(db).stop_experiment(experiment_id)


@app.post("/experiments/{experiment_id}/complete", response_model=ExperimentResponseModel)
def complete_experiment(experiment_id: str, db: Session = Depends(get_db)):
    return ExperimentService(db).complete_experiment(experiment_id)


@app.post("/experiments/{experiment_id}/promote", response_model=ExperimentResponseModel)
def promote_winner(
    experiment_id: str, promote_data: PromoteWinnerModel, db: Session = Depends(get_db)
):
    return ExperimentService(db).promote_winner(
        experiment_id, promote_data.variant, promote_data.mark_promoted
    )


@app.get("/experiments/{experiment_id}/results", response_model=ExperimentResultsSummary)
def get_experiment_results(experiment_id: str, db: Session = Depends(get_db)):
    return ResultsService(db).get_results_summary(experiment_id)


@app.post("/experiments/{experiment_id}/harm-check", response_model=HarmCheckResult)
def check_harm(experiment_id: str, db: Session = Depends(get_db)):
    return SafetyService(db).check_harm_and_auto_stop(experiment_id)


# --- Consumers: assignment, configuration, outcomes ---


@app.get(
    "/experiments/{experiment_id}/assignment/{entity_id}",
    response_model=AssignmentModel,
    summary="Get entity assignment",
)
def get_entity_assignment(
    experiment_id: str = Path(..., description="The ID of the experiment."),
    entity_id: str = Path(..., description="The ID of the entity being bucketed."),
    db: Session = Depends(get_db),
):
    """
    Retrieves an entity's variant assignment. If none exists yet, a
    deterministic assignment is persisted first.
    """
    return AssignmentService(db).get_assignment(experiment_id, entity_id)


@app.get(
    "/experiments/{experiment_id}/config/{entity_id}",
    response_model=Optional[VariantConfigModel],
)
def get_variant_config(experiment_id: str, entity_id: str, db: Session = Depends(get_db)):
    return ConfigResolverService(db).get_variant_config(experiment_id, entity_id)


@app.get(
    "/categories/{category}/config/{entity_id}",
    response_model=Optional[ActiveExperimentConfigModel],
    summary="Resolve the live experiment config for an entity",
)
def get_active_config(category: str, entity_id: str, db: Session = Depends(get_db)):
    """Returns null when no experiment is running for the category."""
    return ConfigResolverService(db).get_active_experiment_config_for_entity(category, entity_id)


@app.post(
    "/outcomes",
    response_model=OutcomeResponseModel,
    status_code=status.HTTP_201_CREATED,
    summary="Record a metric observation.",
)
def post_outcomes(outcome_data: OutcomeCreateModel, db: Session = Depends(get_db)):
    return OutcomeService(db).record_outcome(outcome_data)


if __name__ == "__main__":
    uvicorn.run("experiment_engine.main:app", host="0.0.0.0", port=8000, reload=True)
