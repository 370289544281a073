from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from shopdesk.domain.errors import AuthorizationError
from shopdesk.domain.models import User

log = logging.getLogger(__name__)

SIGNED_IN = "signed_in"
SIGNED_OUT = "signed_out"
IDLE_TIMEOUT = "idle_timeout"

Listener = Callable[[str, Optional[User]], None]


class SessionManager:
    """
    The signed-in operator for this till.

    Built once by the container. Any user activity should call `touch()`;
    after `idle_timeout_seconds` without one the session signs itself out
    and listeners receive IDLE_TIMEOUT.
    """

    def __init__(self, auth_service, idle_timeout_seconds: float = 900.0, timer_factory=threading.Timer):
        self.auth = auth_service
        self.idle_timeout_seconds = float(idle_timeout_seconds)
        self._timer_factory = timer_factory
        self._lock = threading.RLock()
        self._user: Optional[User] = None
        self._timer = None
        self._generation = 0
        self._listeners: list[Listener] = []

    @property
    def current_user(self) -> Optional[User]:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def login(self, username: str, pin: str) -> User:
        user = self.auth.login(username, pin)
        with self._lock:
            self._user = user
            self._restart_timer()
        log.info("session_started user=%s role=%s", user.username, user.role)
        self._notify(SIGNED_IN, user)
        return user

    def logout(self) -> None:
        self._end(SIGNED_OUT)

    def touch(self) -> None:
        with self._lock:
            if self._user is not None:
                self._restart_timer()

    def require_user(self) -> User:
        user = self._user
        if user is None:
            raise AuthorizationError("Not signed in.")
        return user

    def require_action(self, action: str) -> User:
        user = self.require_user()
        self.auth.require_action(user, action)
        self.touch()
        return user

    def close(self) -> None:
        with self._lock:
            self._cancel_timer()

    def _restart_timer(self) -> None:
        self._cancel_timer()
        self._generation += 1
        generation = self._generation
        timer = self._timer_factory(self.idle_timeout_seconds, lambda: self._on_idle(generation))
        timer.daemon = True
        timer.start()
        self._timer = timer

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_idle(self, generation: int) -> None:
        with self._lock:
            # a touch() or a new login armed a newer timer
            if generation != self._generation:
                return
            user = self._clear()
        if user is None:
            return
        log.info("session_idle_timeout after=%ss", self.idle_timeout_seconds)
        self._ended(user, IDLE_TIMEOUT)

    def _end(self, event: str) -> None:
        with self._lock:
            user = self._clear()
        if user is None:
            return
        self._ended(user, event)

    def _clear(self) -> Optional[User]:
        # caller holds self._lock
        user = self._user
        self._user = None
        self._cancel_timer()
        return user

    def _ended(self, user: User, event: str) -> None:
        log.info("session_ended user=%s reason=%s", user.username, event)
        self._notify(event, None)

    def _notify(self, event: str, user: Optional[User]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event, user)
            except Exception:
                log.exception("session_listener_failed event=%s", event)
