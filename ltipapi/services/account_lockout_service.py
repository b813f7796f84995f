"""ACCOUNT LOCKOUT SERVICE

Progressive brute-force protection keyed independently by normalized email
and by source IP. Five failures inside the attempt window lock both keys;
repeated lockouts of the same email escalate from 15 minutes to 1 hour,
6 hours and then 24 hours.

Every cache failure raises ``LockoutServiceError``. An unreachable cache is
never reported as "not locked".
"""

import logging
import time

from ltipapi.config import get_setting
from ltipapi.errors import LockoutServiceError
from ltipapi.services.audit_service import AuditService
from ltipapi.services.results import LockoutInfo
from ltipapi.utils.redis_cache import get_redis_cache
from ltipapi.utils.security_events import log_security_event

logger = logging.getLogger(__name__)

DEFAULT_LOCKOUT = {
    "MAX_ATTEMPTS": 5,
    "ATTEMPT_WINDOW_SECONDS": 900,
    "DURATIONS": [900, 3600, 21600, 86400],
    "STRIKE_TTL_SECONDS": 30 * 24 * 60 * 60,
    "USE_ATOMIC_SCRIPT": True,
}

# Increments both attempt counters and refreshes their window in one step
RECORD_ATTEMPT_SCRIPT = """
local identity_attempts = redis.call('INCR', KEYS[1])
redis.call('EXPIRE', KEYS[1], ARGV[1])
local ip_attempts = redis.call('INCR', KEYS[2])
redis.call('EXPIRE', KEYS[2], ARGV[1])
return {identity_attempts, ip_attempts}
"""


class LockoutKeys:
    @staticmethod
    def attempts_by_username(email):
        return f"lockout:attempts:username:{email}"

    @staticmethod
    def attempts_by_ip(ip):
        return f"lockout:attempts:ip:{ip}"

    @staticmethod
    def lockout_by_username(email):
        return f"lockout:locked:username:{email}"

    @staticmethod
    def lockout_by_ip(ip):
        return f"lockout:locked:ip:{ip}"

    @staticmethod
    def lockout_count(email):
        return f"lockout:count:{email}"


def _normalize(email):
    return (email or "").strip().lower()


def _as_int(value):
    return int(value) if value not in (None, "") else 0


class AccountLockoutService:
    """Account Lockout Service"""

    def __init__(self, cache=None, clock=time.time):
        self._cache = cache
        self._clock = clock
        self._attempt_script = None

    @property
    def cache(self):
        if self._cache is None:
            self._cache = get_redis_cache().client
        return self._cache

    @property
    def config(self):
        return {**DEFAULT_LOCKOUT, **(get_setting("LOCKOUT") or {})}

    def _now_ms(self):
        return int(self._clock() * 1000)

    def _fail(self, operation, error, **context):
        logger.error(
            f"[SERVICE]: Lockout cache failure during {operation} "
            f"({context}): {error}"
        )
        return LockoutServiceError(operation, error)

    def check_lockout(self, identity, ip):
        """Report whether the email or the IP is currently locked."""
        email = _normalize(identity)
        try:
            username_lock, ip_lock, username_attempts, ip_attempts = self.cache.mget(
                [
                    LockoutKeys.lockout_by_username(email),
                    LockoutKeys.lockout_by_ip(ip),
                    LockoutKeys.attempts_by_username(email),
                    LockoutKeys.attempts_by_ip(ip),
                ]
            )
        except Exception as error:
            raise self._fail("check_lockout", error, email=email, ip=ip) from error

        attempt_count = max(_as_int(username_attempts), _as_int(ip_attempts))
        if username_lock or ip_lock:
            expires_at = max(_as_int(username_lock), _as_int(ip_lock))
            remaining = max(0, (expires_at - self._now_ms()) // 1000)
            return LockoutInfo(
                is_locked=True,
                remaining_seconds=remaining,
                attempt_count=attempt_count,
                lockout_expires_at=expires_at,
            )
        return LockoutInfo(is_locked=False, attempt_count=attempt_count)

    def _increment_atomic(self, keys, window):
        if self._attempt_script is None:
            self._attempt_script = self.cache.register_script(RECORD_ATTEMPT_SCRIPT)
        result = self._attempt_script(keys=keys, args=[window])
        return _as_int(result[0]), _as_int(result[1])

    def _increment_fallback(self, keys, window):
        # Read-increment-write: concurrent failures can under-count by one,
        # never over-count
        counts = []
        for key in keys:
            count = _as_int(self.cache.get(key)) + 1
            self.cache.set(key, count, ex=window)
            counts.append(count)
        return counts[0], counts[1]

    def record_failed_attempt(self, identity, ip):
        """Count a failure against the email and the IP, locking at the threshold."""
        email = _normalize(identity)
        config = self.config
        keys = [LockoutKeys.attempts_by_username(email), LockoutKeys.attempts_by_ip(ip)]
        window = config["ATTEMPT_WINDOW_SECONDS"]
        try:
            if config["USE_ATOMIC_SCRIPT"]:
                username_attempts, ip_attempts = self._increment_atomic(keys, window)
            else:
                username_attempts, ip_attempts = self._increment_fallback(keys, window)
        except Exception as error:
            raise self._fail(
                "record_failed_attempt", error, email=email, ip=ip
            ) from error

        attempt_count = max(username_attempts, ip_attempts)
        logger.info(
            f"[SERVICE]: Failed login attempt recorded for {email} from {ip} "
            f"(username={username_attempts}, ip={ip_attempts})"
        )
        if attempt_count >= config["MAX_ATTEMPTS"]:
            return self.trigger_lockout(email, ip, attempt_count)
        return LockoutInfo(is_locked=False, attempt_count=attempt_count)

    def trigger_lockout(self, identity, ip, attempt_count):
        """Lock the email and the IP for a duration chosen by the strike count."""
        email = _normalize(identity)
        config = self.config
        durations = config["DURATIONS"]
        count_key = LockoutKeys.lockout_count(email)
        try:
            strikes = _as_int(self.cache.incr(count_key))
            self.cache.expire(count_key, config["STRIKE_TTL_SECONDS"])
            duration = durations[min(strikes, len(durations)) - 1]
            expires_at = self._now_ms() + duration * 1000
            self.cache.set(
                LockoutKeys.lockout_by_username(email), expires_at, ex=duration
            )
            self.cache.set(LockoutKeys.lockout_by_ip(ip), expires_at, ex=duration)
        except Exception as error:
            raise self._fail("trigger_lockout", error, email=email, ip=ip) from error

        log_security_event(
            "ACCOUNT_LOCKED",
            user_email=email,
            details={
                "ip": ip,
                "attempt_count": attempt_count,
                "lockout_count": strikes,
                "duration_seconds": duration,
            },
            level="warning",
        )
        AuditService.record(
            "ACCOUNT_LOCKED",
            email=email,
            ip_address=ip,
            metadata={
                "attempt_count": attempt_count,
                "lockout_count": strikes,
                "duration_seconds": duration,
            },
        )
        return LockoutInfo(
            is_locked=True,
            remaining_seconds=duration,
            attempt_count=attempt_count,
            lockout_expires_at=expires_at,
        )

    def reset_lockout(self, identity, ip):
        """Clear counters and markers after a successful login.

        The strike count is kept so the next lockout still escalates.
        """
        email = _normalize(identity)
        try:
            self.cache.delete(
                LockoutKeys.attempts_by_username(email),
                LockoutKeys.attempts_by_ip(ip),
                LockoutKeys.lockout_by_username(email),
                LockoutKeys.lockout_by_ip(ip),
            )
        except Exception as error:
            raise self._fail("reset_lockout", error, email=email, ip=ip) from error
        logger.info(f"[SERVICE]: Lockout state reset for {email}")

    def admin_unlock(self, identity, admin_email):
        """Clear every lockout trace for an email, strike count included."""
        email = _normalize(identity)
        try:
            self.cache.delete(
                LockoutKeys.attempts_by_username(email),
                LockoutKeys.lockout_by_username(email),
                LockoutKeys.lockout_count(email),
            )
        except Exception as error:
            raise self._fail(
                "admin_unlock", error, email=email, admin=admin_email
            ) from error

        log_security_event(
            "ACCOUNT_UNLOCKED",
            user_email=email,
            details={"admin_email": admin_email},
            level="info",
        )
        AuditService.record(
            "ACCOUNT_UNLOCKED", email=email, metadata={"admin_email": admin_email}
        )
        return True

    def get_stats(self):
        try:
            locked = sum(
                1 for _ in self.cache.scan_iter(match="lockout:locked:username:*")
            )
        except Exception as error:
            logger.error(f"[SERVICE]: Failed to get lockout stats: {error}")
            return {"total_locked_identities": 0, "is_cache_available": False}
        return {"total_locked_identities": locked, "is_cache_available": True}


_account_lockout_service = None


def get_account_lockout_service():
    global _account_lockout_service
    if _account_lockout_service is None:
        _account_lockout_service = AccountLockoutService()
    return _account_lockout_service
