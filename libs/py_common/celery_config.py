# libs/py_common/celery_config.py
from typing import Optional

from celery import Celery

from .config import Settings, get_settings


def create_celery_app(app_name: str, settings: Optional[Settings] = None) -> Celery:
    """Creates and configures a Celery application instance."""
    settings = settings or get_settings()
    app = Celery(
        app_name,
        broker=settings.celery_broker_url,
        backend=settings.celery_result_backend_url,
        include=[]  # Tasks are explicitly included by services
    )

    app.conf.update(
        task_serializer='json',
        accept_content=['json'],  # Ignore other content
        result_serializer='json',
        timezone='UTC',
        enable_utc=True,
        # A transfer task must not be re-run blindly after a worker crash
        task_acks_late=False,
        worker_prefetch_multiplier=1,
    )
    return app
