"""
auth/credentials.py -- Credential Validator: registration and password login.

This module only decides whether an identity is who it claims to be. It
never issues tokens -- auth/rotation.py starts the session once a User comes
back from here.

Enumeration resistance:
  login() runs bcrypt exactly once on every path. Unknown email, soft-deleted
  user and wrong password all cost the same and raise the same
  InvalidCredentials with the same message. Registration's DuplicateEmail is
  the one deliberate disclosure.

Layer rule: no imports from api/ or resources/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.store import UserStore, normalize_email
from core.errors import DuplicateEmail, InvalidCredentials

logger = logging.getLogger("tigra.auth")


class CredentialValidator:
    """Verifies registration and login input against the user store.

    Usage:
        validator = CredentialValidator(user_store)
        user = validator.register("a@example.com", "s3cret-pass")
        user = validator.login("A@example.com", "s3cret-pass")
    """

    def __init__(self, users: UserStore) -> None:
        self._users = users

    def register(self, email: str, password: str, name: str | None = None, role: Role = Role.USER) -> User:
        """Create a new account and return it.

        The pre-check gives the common case a clean error; the UNIQUE index
        on users.email catches the concurrent case, where two registrations
        for one address race past the pre-check.
        """
        email = normalize_email(email)
        if self._users.get_by_email(email, include_deleted=True) is not None:
            raise DuplicateEmail()
        user = User(email=email, password_hash=hash_password(password), role=role, name=name)
        try:
            user_id = self._users.create_user(user)
        except IntegrityError as exc:
            raise DuplicateEmail() from exc
        logger.info("User registered (user_id=%s)", user_id)
        return self._users.get_by_id(user_id)

    def login(self, email: str, password: str) -> User:
        """Return the User for a correct email/password pair.

        Raises InvalidCredentials for every failure. Do not add early returns
        before verify_password() -- that re-introduces the timing side-channel.
        """
        user = self._users.get_by_email(normalize_email(email))
        if user is None:
            verify_password(password, DUMMY_HASH)
            raise InvalidCredentials()
        if not verify_password(password, user.password_hash):
            logger.info("Failed login (user_id=%s)", user.id)
            raise InvalidCredentials()
        return user

    def ensure_admin(self, email: str, password: str, name: str | None = None) -> User:
        """Return an ADMIN account for email, creating or promoting it as needed.

        Used to seed the first administrator at startup and by the CLI. An
        existing account keeps its password; only its role is raised.
        """
        existing = self._users.get_by_email(email)
        if existing is None:
            user = self.register(email, password, name=name, role=Role.ADMIN)
            logger.info("Admin account created (user_id=%s)", user.id)
            return user
        if existing.role != Role.ADMIN:
            self._users.update_user(existing.id, role=Role.ADMIN)
            logger.info("Existing user promoted to admin (user_id=%s)", existing.id)
            return self._users.get_by_id(existing.id)
        return existing
