"""TASKS MODULE"""

# Import tasks to ensure they are registered with Celery
from ltipapi.tasks import refresh_token_cleanup  # noqa: F401
