"""
Nightly (or more frequent) harm check over every RUNNING experiment.

    python -m experiment_engine.jobs.harm_check
"""

import logging

from experiment_engine.core.db import SessionLocal
from experiment_engine.core.logging import configure_logging
from experiment_engine.core.settings import config_settings
from experiment_engine.services.safety_service import SafetyService

logger = logging.getLogger(__name__)


def run_harm_checks(session_factory=SessionLocal) -> list:
    db = session_factory()
    try:
        results = SafetyService(db).check_all_running()
    finally:
        db.close()

    stopped = [r for r in results if r.stopped]
    logger.info(f"Harm check: {len(results)} running experiment(s), {len(stopped)} stopped")
    return results


if __name__ == "__main__":
    configure_logging(config_settings.LOG_LEVEL)
    run_harm_checks()
