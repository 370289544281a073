from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from shopdesk.domain.errors import AuthorizationError
from shopdesk.domain.models import User

log = logging.getLogger(__name__)

ASSIGNABLE_ROLES = {"manager", "seller"}

# action -> roles allowed to perform it
PERMISSIONS: dict[str, set[str]] = {
    "create_sale": {"admin", "manager", "seller"},
    "edit_sale": {"admin", "manager"},
    "delete_sale": {"admin"},
    "view_all_sales": {"admin", "manager"},
    "record_fx_rate": {"admin", "manager"},
    "adjust_stock": {"admin", "manager"},
    "export_sales": {"admin", "manager"},
    "manage_users": {"admin"},
    "manage_cash": {"admin", "manager"},
    "view_reports": {"admin", "manager"},
}


def role_can(role: str, action: str) -> bool:
    return role in PERMISSIONS.get(action, set())


@dataclass(frozen=True)
class LoginPolicy:
    min_pin_length: int = 8
    max_failed_attempts: int = 5
    lockout_seconds: int = 60


def _check_pin_strength(pin: str, min_len: int) -> None:
    if len(pin) < min_len:
        raise AuthorizationError(f"PIN must have at least {min_len} characters.")
    if re.search(r"[A-Za-z]", pin) is None or re.search(r"\d", pin) is None:
        raise AuthorizationError("PIN must mix letters and numbers.")


def _utc_now() -> datetime:
    # sqlite datetime('now') is naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AuthService:
    def __init__(self, repo, policy: LoginPolicy | None = None, clock: Callable[[], datetime] = _utc_now):
        self.repo = repo
        self.policy = policy or LoginPolicy()
        self._clock = clock

    def list_users(self) -> list[User]:
        return self.repo.list_users()

    def _lock_remaining(self, username: str) -> Optional[int]:
        state = self.repo.get_user_security_state(username)
        if not state or not state[1]:
            return None
        until = datetime.fromisoformat(state[1])
        now = self._clock()
        return int((until - now).total_seconds()) if now < until else None

    def login(self, username: str, pin: str) -> User:
        name = username.strip()
        if not name:
            raise AuthorizationError("Username is required.")

        remaining = self._lock_remaining(name)
        if remaining is not None:
            log.warning("login_blocked user=%s remaining=%ss", name, remaining)
            raise AuthorizationError(f"User is temporarily locked. Retry in {remaining}s.")

        user = self.repo.authenticate_user(name, pin.strip())
        if user is None:
            _attempts, locked_until = self.repo.record_login_failure(
                name, self.policy.max_failed_attempts, self.policy.lockout_seconds
            )
            if locked_until is not None:
                log.warning("login_locked user=%s until=%s", name, locked_until)
                raise AuthorizationError("Too many failed attempts. User is temporarily locked.")
            log.info("login_failed user=%s", name)
            raise AuthorizationError("Invalid username or PIN.")

        log.info("login_ok user=%s role=%s", user.username, user.role)
        return user

    def can(self, user: User, action: str) -> bool:
        return role_can(user.role, action)

    def require_action(self, user: User, action: str) -> None:
        if not self.can(user, action):
            raise AuthorizationError(f"Role '{user.role}' is not allowed to perform '{action}'.")

    def create_user(self, actor: User, username: str, pin: str, role: str) -> int:
        """Admin-only. New users must change their PIN on first login."""
        self.require_action(actor, "manage_users")

        name = username.strip()
        secret = pin.strip()
        target_role = role.strip().lower()
        if not name:
            raise AuthorizationError("Username is required.")
        _check_pin_strength(secret, self.policy.min_pin_length)
        if target_role not in ASSIGNABLE_ROLES:
            raise AuthorizationError("Only manager or seller users can be created.")
        if any(u.username == name for u in self.repo.list_users()):
            raise AuthorizationError(f"Could not create user '{name}': username already taken.")

        uid = self.repo.create_user(name, secret, target_role, must_change_pin=1)
        log.info("user_created id=%s user=%s role=%s by=%s", uid, name, target_role, actor.id)
        return uid

    def change_my_pin(self, actor: User, current_pin: str, new_pin: str) -> None:
        current = current_pin.strip()
        new = new_pin.strip()
        if not current:
            raise AuthorizationError("Current PIN is required.")
        _check_pin_strength(new, self.policy.min_pin_length)
        if new == current:
            raise AuthorizationError("New PIN must be different from the current one.")
        if not self.repo.change_user_pin(actor.id, current, new):
            raise AuthorizationError("Current PIN is incorrect.")
        log.info("pin_changed user=%s", actor.username)
