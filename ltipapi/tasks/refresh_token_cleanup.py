"""REFRESH TOKEN CLEANUP TASKS"""

import logging

import rollbar

from ltipapi import celery

logger = logging.getLogger(__name__)


class RefreshTokenCleanupTask(celery.Task):
    """Base task for refresh token cleanup, run inside the app context"""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"Refresh token cleanup task failed: {exc}")
        rollbar.report_exc_info()


@celery.task(base=RefreshTokenCleanupTask, bind=True)
def cleanup_expired_refresh_tokens(self):
    """Delete expired refresh tokens and revoked ones past the retention window"""
    logger.info("[TASK]: Starting cleanup of expired refresh tokens")

    try:
        from ltipapi.services.token_service import TokenService

        cleaned_count = TokenService.cleanup_expired()

        logger.info(
            f"[TASK]: Successfully cleaned up {cleaned_count} expired refresh tokens"
        )
        return {
            "status": "success",
            "cleaned_count": cleaned_count,
            "message": f"Cleaned up {cleaned_count} expired refresh tokens",
        }
    except Exception as error:
        logger.error(f"[TASK]: Error cleaning up expired refresh tokens: {str(error)}")
        raise self.retry(exc=error, countdown=60, max_retries=3) from error
