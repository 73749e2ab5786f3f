class ExperimentEngineError(Exception):
    """Base class for errors raised by the experimentation engine."""


class ExperimentNotFoundError(ExperimentEngineError):
    def __init__(self, experiment_id: str):
        self.experiment_id = experiment_id
        super().__init__(f"Experiment {experiment_id} not found.")


class InvalidTransitionError(ExperimentEngineError):
    """Raised when a lifecycle action is not allowed from the current status."""

    def __init__(self, experiment_id: str, status, action: str):
        self.experiment_id = experiment_id
        self.status = getattr(status, "value", status)
        self.action = action
        super().__init__(
            f"Cannot {action} experiment {experiment_id} while it is {self.status}."
        )
