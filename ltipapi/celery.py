from celery import Celery
from celery.signals import task_failure
import rollbar


def celery_base_data_hook(request, data):
    data["framework"] = "celery"


rollbar.BASE_DATA_HOOK = celery_base_data_hook


@task_failure.connect
def handle_task_failure(**kw):
    rollbar.report_exc_info(extra_data=kw)


def make_celery(app):
    celery = Celery(
        app.import_name,
        backend=app.config["result_backend"],
        broker=app.config["broker_url"],
    )
    celery.conf.update(app.config)

    celery.conf.task_routes = {
        "ltipapi.tasks.refresh_token_cleanup.cleanup_expired_refresh_tokens": {
            "queue": "default"
        },
    }

    # Configure periodic tasks
    celery.conf.beat_schedule = {
        "cleanup-expired-refresh-tokens": {
            "task": (
                "ltipapi.tasks.refresh_token_cleanup.cleanup_expired_refresh_tokens"
            ),
            "schedule": 86400.0,  # Every day (86400 seconds)
        },
    }
    celery.conf.timezone = "UTC"

    task_base = celery.Task

    class ContextTask(task_base):
        abstract = True

        def __call__(self, *args, **kwargs):
            with app.app_context():
                return task_base.__call__(self, *args, **kwargs)

    celery.Task = ContextTask
    return celery
