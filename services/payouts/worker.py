import time
import uuid
from functools import lru_cache

import structlog
from celery.signals import worker_ready

from libs.py_common.celery_config import create_celery_app
from libs.py_common.config import get_settings
from libs.py_common.errors import PartialFailureError, PaymentsError
from libs.py_common.logging import setup_logging

from .deps import PayoutsContainer
from .metrics import (
    APP_ERRORS_TOTAL,
    CELERY_TASK_DURATION_SECONDS,
    CELERY_TASKS_PROCESSED_TOTAL,
    start_worker_metrics_server,
)

_settings = get_settings()
setup_logging(_settings.log_level, service="payouts-worker", json_logs=_settings.log_json)
logger = structlog.get_logger(__name__)

celery_app = create_celery_app("payouts_worker")


@worker_ready.connect
def on_worker_ready(**kwargs):
    start_worker_metrics_server()


@lru_cache()
def get_worker_container() -> PayoutsContainer:
    return PayoutsContainer.from_settings()


@celery_app.task(name="services.payouts.worker.execute_transfer", bind=True)
def execute_transfer(self, request_id_str: str, actor: str = "system"):
    """Runs the transfer orchestrator for an approved payout request.

    Not retried automatically: a processor rejection needs a human decision and
    a partial failure needs reconciliation before anything is sent again.
    """
    task_start_time = time.monotonic()
    task_name = self.name
    metric_status = "failure"
    logger.info("Starting transfer execution for payout request", payout_request_id=request_id_str, actor=actor)

    try:
        try:
            request_id = uuid.UUID(request_id_str)
        except ValueError:
            APP_ERRORS_TOTAL.labels(component="worker", error_type="invalid_request_id").inc()
            logger.error("Invalid payout request id", payout_request_id=request_id_str)
            return {"status": "error", "error": "Invalid payout request id"}

        try:
            outcome = get_worker_container().orchestrator.execute(request_id, actor)
        except PartialFailureError as e:
            metric_status = "partial_failure"
            logger.critical("Transfer went out but was not recorded", payout_request_id=request_id_str, **e.to_dict())
            return {"status": "partial_failure", **e.to_dict()}
        except PaymentsError as e:
            metric_status = e.kind
            APP_ERRORS_TOTAL.labels(component="worker", error_type=e.kind).inc()
            logger.warning("Transfer not executed", payout_request_id=request_id_str, kind=e.kind, error=e.message)
            return {"status": "error", **e.to_dict()}

        metric_status = "success"
        logger.info("Transfer executed", payout_request_id=request_id_str, **outcome.to_dict())
        return {"status": "success", "transfer": outcome.to_dict()}
    finally:
        CELERY_TASK_DURATION_SECONDS.labels(task_name=task_name).observe(time.monotonic() - task_start_time)
        CELERY_TASKS_PROCESSED_TOTAL.labels(task_name=task_name, status=metric_status).inc()

# Entry point for Celery worker: celery -A services.payouts.worker.celery_app worker -Q payouts
