# workers/celery_app.py
from celery import Celery, Task
from celery.schedules import crontab
from celery.signals import setup_logging
from flask import has_app_context

BEAT_SCHEDULE = {
    "sweep-queued-stripe-events": {
        "task": "investorpedia.workers.tasks.sweep_queued_events",
        "schedule": 60.0,
    },
    "prune-processed-stripe-events-daily": {
        "task": "investorpedia.workers.tasks.prune_processed_events",
        "schedule": crontab(minute=15, hour=3),
    },
}


def celery_init_app(app) -> Celery:
    """
    Bind a Celery instance to the Flask app so every task runs inside an
    app context. Tasks executed eagerly from a request reuse that request's
    context and session.
    """

    class FlaskTask(Task):
        def __call__(self, *args, **kwargs):
            if has_app_context():
                return self.run(*args, **kwargs)
            with app.app_context():
                return self.run(*args, **kwargs)

    celery_app = Celery(app.name, task_cls=FlaskTask)
    celery_app.config_from_object(app.config["CELERY"])
    celery_app.conf.update(
        task_default_queue="default",
        task_default_retry_delay=5,
        task_time_limit=300,
        task_soft_time_limit=240,
        beat_schedule=BEAT_SCHEDULE,
    )
    celery_app.set_default()
    app.extensions["celery"] = celery_app
    return celery_app


@setup_logging.connect
def _configure_worker_logging(loglevel=None, **kwargs):
    from investorpedia.logging_config import configure_logging_for_worker

    configure_logging_for_worker(loglevel or "INFO")
