import threading
from datetime import timedelta

import pytest

from breach_detection.config import EngineConfig, SecurityThresholds
from breach_detection.errors import UserNotFoundError
from breach_detection.lockout import LoginLockoutManager


@pytest.fixture
def manager(directory, config, audit, clock):
    return LoginLockoutManager(directory, config, audit=audit, clock=clock)


def fail(manager, times, user_id="user-1"):
    status = None
    for _ in range(times):
        status = manager.record_failed_login(user_id)
    return status


def test_fresh_account_is_unlocked(manager):
    status = manager.check_lockout("user-1")
    assert status.locked is False
    assert status.remaining_attempts == 10


def test_remaining_attempts_count_down(manager):
    status = fail(manager, 3)
    assert status.locked is False
    assert status.failed_attempts == 3
    assert status.remaining_attempts == 7


def test_account_locks_at_max_attempts(manager, clock):
    status = fail(manager, 10)

    assert status.locked is True
    assert status.remaining_attempts == 0
    assert status.locked_until == clock() + timedelta(minutes=30)
    assert status.minutes_remaining == 30
    assert manager.is_locked("user-1")


def test_minutes_remaining_rounds_up(manager, clock):
    fail(manager, 10)
    clock.advance(timedelta(minutes=12, seconds=30))
    assert manager.check_lockout("user-1").minutes_remaining == 18


def test_failures_while_locked_do_not_count(manager, directory, clock):
    fail(manager, 10)
    locked_until = directory.get_user("user-1").locked_until

    clock.advance(timedelta(minutes=1))
    status = fail(manager, 5)

    assert status.locked is True
    assert status.failed_attempts == 10
    assert directory.get_user("user-1").locked_until == locked_until


def test_expired_lock_restarts_count(manager, clock):
    fail(manager, 10)
    clock.advance(timedelta(minutes=31))

    assert manager.check_lockout("user-1").locked is False
    status = manager.record_failed_login("user-1")
    assert status.locked is False
    assert status.failed_attempts == 1
    assert status.remaining_attempts == 9


def test_successful_login_clears_failures(manager):
    fail(manager, 10)
    manager.clear_failed_logins("user-1")

    status = manager.check_lockout("user-1")
    assert status.locked is False
    assert status.failed_attempts == 0
    assert status.remaining_attempts == 10


def test_unknown_user(manager):
    assert manager.check_lockout("nobody").remaining_attempts == 0
    assert manager.record_failed_login("nobody").locked is False
    with pytest.raises(UserNotFoundError):
        manager.unlock_account("nobody", "admin-1")


def test_admin_unlock_is_audited(manager, audit):
    fail(manager, 10)
    manager.unlock_account("user-1", "admin-1")

    assert manager.is_locked("user-1") is False
    entry = audit.entries[-1]
    assert entry.action == "UNLOCK_ACCOUNT"
    assert entry.user_id == "admin-1"
    assert entry.resource_id == "user-1"
    assert entry.details["unlocked_user_email"] == "casey@acme.test"


def test_locked_accounts_lists_active_locks(manager, clock):
    fail(manager, 10)
    fail(manager, 10, user_id="admin-2")
    fail(manager, 2, user_id="admin-1")

    locked = manager.locked_accounts("org-1")
    assert sorted(account.id for account in locked) == ["admin-2", "user-1"]
    assert all(account.failed_attempts == 10 for account in locked)

    clock.advance(timedelta(hours=1))
    assert manager.locked_accounts("org-1") == []


def test_concurrent_failures_are_not_lost(directory, audit, clock):
    config = EngineConfig(thresholds=SecurityThresholds(max_failed_logins_per_hour=1000))
    manager = LoginLockoutManager(directory, config, audit=audit, clock=clock)
    threads = [threading.Thread(target=manager.record_failed_login, args=("user-1",)) for _ in range(40)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert manager.check_lockout("user-1").failed_attempts == 40
