"""CSRF TOKEN SERVICE"""

import hmac
import logging
import secrets

from ltipapi.config import get_setting
from ltipapi.errors import CsrfError
from ltipapi.utils.redis_cache import get_redis_cache

logger = logging.getLogger(__name__)

# Deletes the token only if it is still the one that was presented
CONSUME_TOKEN_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


def _csrf_key(session_id):
    return f"session:csrf:{session_id}"


class CsrfTokenService:
    """Synchronizer tokens bound to a session.

    Each session has exactly one current token in the cache. Generating or
    rotating replaces it, and ``consume`` deletes it on acceptance, so a
    token works for a single request.
    """

    def __init__(self, cache=None):
        self._cache = cache
        self._consume_script = None

    @property
    def cache(self):
        if self._cache is None:
            self._cache = get_redis_cache().client
        return self._cache

    @property
    def config(self):
        return {"TTL_SECONDS": 3600, "TOKEN_BYTES": 32, **(get_setting("CSRF") or {})}

    def generate(self, session_id):
        if not session_id:
            raise CsrfError("A session is required to issue a CSRF token")
        config = self.config
        token = secrets.token_urlsafe(config["TOKEN_BYTES"])
        try:
            self.cache.set(_csrf_key(session_id), token, ex=config["TTL_SECONDS"])
        except Exception as error:
            logger.error(f"[SERVICE]: Failed to store CSRF token: {error}")
            raise CsrfError("CSRF token store unavailable") from error
        logger.debug(f"[SERVICE]: CSRF token generated for session {session_id}")
        return token

    def validate(self, session_id, token):
        if not session_id or not token:
            return False
        try:
            current = self.cache.get(_csrf_key(session_id))
        except Exception as error:
            logger.error(f"[SERVICE]: Failed to read CSRF token: {error}")
            raise CsrfError("CSRF token store unavailable") from error
        if not current:
            logger.warning(f"[SERVICE]: No CSRF token for session {session_id}")
            return False
        return hmac.compare_digest(str(current).encode(), str(token).encode())

    def consume(self, session_id, token):
        """Accept a token and delete it in one step.

        Of several requests presenting the same token only one gets True.
        The session has no valid token afterwards until a new one is issued.
        """
        if not self.validate(session_id, token):
            return False
        try:
            if self._consume_script is None:
                self._consume_script = self.cache.register_script(CONSUME_TOKEN_SCRIPT)
            deleted = self._consume_script(keys=[_csrf_key(session_id)], args=[token])
        except Exception as error:
            logger.error(f"[SERVICE]: Failed to consume CSRF token: {error}")
            raise CsrfError("CSRF token store unavailable") from error
        return int(deleted or 0) == 1

    def rotate(self, session_id):
        return self.generate(session_id)

    def clear(self, session_id):
        if not session_id:
            return
        try:
            self.cache.delete(_csrf_key(session_id))
        except Exception as error:
            logger.error(f"[SERVICE]: Failed to clear CSRF token: {error}")
            raise CsrfError("CSRF token store unavailable") from error
        logger.info(f"[SERVICE]: CSRF token cleared for session {session_id}")


_csrf_token_service = None


def get_csrf_token_service():
    global _csrf_token_service
    if _csrf_token_service is None:
        _csrf_token_service = CsrfTokenService()
    return _csrf_token_service
