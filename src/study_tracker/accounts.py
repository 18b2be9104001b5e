"""Local user profiles."""

from __future__ import annotations

import logging
from typing import Optional

from .errors import AuthenticationError, ValidationError
from .models import User, epoch_millis, utcnow
from .store import TrackerStore

__all__ = ["Accounts"]


class Accounts:
    """Register and authenticate users against the ``users`` collection.

    Profiles are local and unencrypted; the password only separates
    histories of people sharing one machine.
    """

    def __init__(
        self, store: TrackerStore, *, logger: Optional[logging.Logger] = None
    ) -> None:
        self._store = store
        self._logger = logger or logging.getLogger(__name__)

    def users(self) -> list[User]:
        return self._store.load_users()

    def find(self, user_id: str) -> Optional[User]:
        for user in self.users():
            if user.id == user_id:
                return user
        return None

    def register(self, name: str, password: str) -> User:
        cleaned = (name or "").strip()
        if not cleaned or not password:
            raise ValidationError("Enter both a username and a password.")
        existing = self.users()
        wanted = cleaned.casefold()
        if any(user.name.casefold() == wanted for user in existing):
            raise ValidationError("That username already exists.")

        user_id = f"user-{epoch_millis(utcnow())}"
        taken = {user.id for user in existing}
        while user_id in taken:
            user_id = f"user-{int(user_id.split('-', 1)[1]) + 1}"
        user = User(id=user_id, name=cleaned, password=password)
        self._store.save_users([*existing, user])
        self._logger.info(
            "User registered",
            extra={"event": "accounts.registered", "user_id": user.id},
        )
        return user

    def login(self, user_id: str, password: str) -> User:
        user = self.find(user_id)
        if user is None or user.password != password:
            self._logger.info(
                "Login rejected",
                extra={"event": "accounts.login_failed", "user_id": user_id},
            )
            raise AuthenticationError("Incorrect password.")
        self._logger.info(
            "User logged in",
            extra={"event": "accounts.login", "user_id": user.id},
        )
        return user
