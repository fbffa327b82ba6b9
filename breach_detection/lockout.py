from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Callable, List

from .config import EngineConfig
from .errors import UserNotFoundError
from .logging_config import AUTH_FAILURE, log_security_event
from .models import AuditEntry, LockedAccount, LockoutStatus, Resource, UserRecord
from .stores import AuditRecorder, Directory

logger = logging.getLogger(__name__)


class LoginLockoutManager:
    """Failed-login throttling kept on the user record.

    Active -> Locked after ``max_failed_logins_per_hour`` failures, back to
    Active on a successful login, an admin unlock, or once the lock expires.
    """

    def __init__(
        self,
        directory: Directory,
        config: EngineConfig | None = None,
        audit: AuditRecorder | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.directory = directory
        self.config = config or EngineConfig()
        self.audit = audit
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def max_attempts(self) -> int:
        return self.config.thresholds.max_failed_logins_per_hour

    def _status(self, user: UserRecord, now: datetime) -> LockoutStatus:
        if user.locked_until is not None and user.locked_until > now:
            remaining = (user.locked_until - now).total_seconds() / 60
            return LockoutStatus(
                locked=True,
                remaining_attempts=0,
                failed_attempts=user.failed_login_attempts,
                locked_until=user.locked_until,
                minutes_remaining=math.ceil(remaining),
            )
        return LockoutStatus(
            locked=False,
            remaining_attempts=max(0, self.max_attempts - user.failed_login_attempts),
            failed_attempts=user.failed_login_attempts,
        )

    def check_lockout(self, user_id: str) -> LockoutStatus:
        user = self.directory.get_user(user_id)
        if user is None:
            return LockoutStatus(locked=False, remaining_attempts=0)
        return self._status(user, self.clock())

    def record_failed_login(self, user_id: str) -> LockoutStatus:
        now = self.clock()
        user = self.directory.get_user(user_id)
        if user is None:
            return LockoutStatus(locked=False, remaining_attempts=0)

        # failures during an active lock neither extend it nor count
        if user.locked_until is not None and user.locked_until > now:
            return self._status(user, now)

        updated = self.directory.increment_failed_logins(user_id, now)
        if updated is None:
            return LockoutStatus(locked=False, remaining_attempts=0)

        if updated.failed_login_attempts >= self.max_attempts:
            updated.locked_until = now + self.config.lockout_duration
            self.directory.set_locked_until(user_id, updated.locked_until)
            log_security_event(
                logger,
                AUTH_FAILURE,
                f"Account locked due to {updated.failed_login_attempts} failed login attempts",
                user_id=user_id,
                failed_attempts=updated.failed_login_attempts,
                lock_until=updated.locked_until.isoformat(),
            )
        return self._status(updated, now)

    def clear_failed_logins(self, user_id: str) -> None:
        self.directory.reset_failed_logins(user_id)

    def unlock_account(self, user_id: str, admin_id: str) -> None:
        user = self.directory.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        self.directory.reset_failed_logins(user_id)
        logger.info("Account %s unlocked by admin %s", user_id, admin_id)

        if self.audit is not None:
            self.audit.write_audit_record(
                AuditEntry(
                    org_id=user.org_id,
                    user_id=admin_id,
                    action="UNLOCK_ACCOUNT",
                    resource=Resource.USER.value,
                    resource_id=user_id,
                    resource_name=user.email,
                    details={"unlocked_user_id": user_id, "unlocked_user_email": user.email},
                    timestamp=self.clock(),
                )
            )

    def locked_accounts(self, org_id: str) -> List[LockedAccount]:
        now = self.clock()
        locked: List[LockedAccount] = []
        for user in self.directory.list_org_users(org_id):
            if user.locked_until is not None and user.locked_until > now:
                locked.append(
                    LockedAccount(
                        id=user.id,
                        email=user.email,
                        name=user.name,
                        locked_until=user.locked_until,
                        failed_attempts=user.failed_login_attempts,
                    )
                )
        return locked

    def is_locked(self, user_id: str) -> bool:
        return self.check_lockout(user_id).locked
