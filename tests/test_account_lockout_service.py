"""Tests for the distributed, cache-backed lockout service"""

from conftest import UnavailableRedis
import pytest

from ltipapi.errors import LockoutServiceError
from ltipapi.models import AuditLog
from ltipapi.services.account_lockout_service import AccountLockoutService, LockoutKeys

EMAIL = "Target@Test.com"
IP = "198.51.100.4"


def fail_times(service, count, email=EMAIL, ip=IP):
    info = None
    for _ in range(count):
        info = service.record_failed_attempt(email, ip)
    return info


class TestLockoutThreshold:
    def test_starts_unlocked(self, app, lockout_service):
        info = lockout_service.check_lockout(EMAIL, IP)
        assert not info.is_locked
        assert info.attempt_count == 0

    def test_four_failures_do_not_lock(self, app, lockout_service):
        info = fail_times(lockout_service, 4)
        assert not info.is_locked
        assert info.attempt_count == 4
        assert not lockout_service.check_lockout(EMAIL, IP).is_locked

    def test_fifth_failure_locks_for_fifteen_minutes(self, app, lockout_service):
        info = fail_times(lockout_service, 5)
        assert info.is_locked
        assert info.remaining_seconds == 900

        checked = lockout_service.check_lockout(EMAIL, IP)
        assert checked.is_locked
        assert checked.remaining_seconds == 900
        assert checked.attempt_count == 5

    def test_identity_is_normalized(self, app, lockout_service):
        fail_times(lockout_service, 5, email="  TARGET@test.COM ")
        assert lockout_service.check_lockout("target@test.com", "10.0.0.1").is_locked

    def test_ip_lock_covers_other_identities(self, app, lockout_service):
        fail_times(lockout_service, 5)
        assert lockout_service.check_lockout("someone@else.com", IP).is_locked

    def test_lock_expires(self, app, lockout_service, fake_redis):
        fail_times(lockout_service, 5)
        fake_redis.advance(901)
        assert not lockout_service.check_lockout(EMAIL, IP).is_locked

    def test_attempt_window_expires(self, app, lockout_service, fake_redis):
        fail_times(lockout_service, 4)
        fake_redis.advance(901)
        info = lockout_service.record_failed_attempt(EMAIL, IP)
        assert not info.is_locked
        assert info.attempt_count == 1

    def test_lockout_is_audited(self, app, lockout_service):
        fail_times(lockout_service, 5)
        entry = AuditLog.query.filter_by(action="ACCOUNT_LOCKED").one()
        assert entry.email == "target@test.com"
        assert entry.event_metadata["duration_seconds"] == 900


class TestEscalation:
    def test_durations_escalate(self, app, lockout_service, fake_redis):
        durations = []
        for _ in range(5):
            info = fail_times(lockout_service, 5)
            durations.append(info.remaining_seconds)
            fake_redis.advance(info.remaining_seconds + 1)
        assert durations == [900, 3600, 21600, 86400, 86400]

    def test_strike_count_survives_reset(self, app, lockout_service, fake_redis):
        fail_times(lockout_service, 5)
        lockout_service.reset_lockout(EMAIL, IP)
        assert not lockout_service.check_lockout(EMAIL, IP).is_locked

        info = fail_times(lockout_service, 5)
        assert info.remaining_seconds == 3600

    def test_admin_unlock_clears_strikes(self, app, lockout_service, fake_redis):
        fail_times(lockout_service, 5)
        assert lockout_service.admin_unlock(EMAIL, "admin@test.com") is True
        assert not lockout_service.check_lockout(EMAIL, "10.0.0.9").is_locked
        assert fake_redis.get(LockoutKeys.lockout_count("target@test.com")) is None

        # The IP keeps its marker, so use a fresh address
        info = fail_times(lockout_service, 5, ip="10.0.0.9")
        assert info.remaining_seconds == 900
        assert AuditLog.query.filter_by(action="ACCOUNT_UNLOCKED").count() == 1


class TestFallbackCounter:
    def test_read_increment_write_path(self, app, fake_redis, monkeypatch):
        monkeypatch.setitem(
            app.config, "LOCKOUT", {**app.config["LOCKOUT"], "USE_ATOMIC_SCRIPT": False}
        )
        service = AccountLockoutService(cache=fake_redis, clock=fake_redis.clock)

        info = fail_times(service, 4)
        assert info.attempt_count == 4
        assert fake_redis.ttl(LockoutKeys.attempts_by_ip(IP)) == 900
        assert fail_times(service, 1).is_locked


class TestFailClosed:
    @pytest.fixture
    def broken_service(self):
        return AccountLockoutService(cache=UnavailableRedis())

    def test_check_raises(self, app, broken_service):
        with pytest.raises(LockoutServiceError) as excinfo:
            broken_service.check_lockout(EMAIL, IP)
        assert excinfo.value.operation == "check_lockout"
        assert excinfo.value.__cause__ is not None

    def test_record_raises(self, app, broken_service):
        with pytest.raises(LockoutServiceError) as excinfo:
            broken_service.record_failed_attempt(EMAIL, IP)
        assert excinfo.value.operation == "record_failed_attempt"

    def test_reset_raises(self, app, broken_service):
        with pytest.raises(LockoutServiceError):
            broken_service.reset_lockout(EMAIL, IP)

    def test_error_serializes_operation(self, app, broken_service):
        with pytest.raises(LockoutServiceError) as excinfo:
            broken_service.check_lockout(EMAIL, IP)
        assert excinfo.value.serialize == {
            "message": "Lockout service unavailable during check_lockout",
            "error_code": "service_unavailable",
            "operation": "check_lockout",
        }

    def test_stats_report_unavailable_cache(self, app, broken_service):
        assert broken_service.get_stats() == {
            "total_locked_identities": 0,
            "is_cache_available": False,
        }


def test_stats_count_locked_identities(app, lockout_service):
    fail_times(lockout_service, 5, email="a@test.com", ip="10.0.0.1")
    fail_times(lockout_service, 5, email="b@test.com", ip="10.0.0.2")
    assert lockout_service.get_stats() == {
        "total_locked_identities": 2,
        "is_cache_available": True,
    }
