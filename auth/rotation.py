"""
auth/rotation.py -- Rotation Protocol: session start, refresh, logout.

State machine per refresh-token chain link:

    ACTIVE --rotate--> ROTATED   (successor created, replaced_by_token_id set)
    ACTIVE --logout--> REVOKED
    ACTIVE --reuse---> REVOKED   (bulk, every active link of the user)
    ACTIVE --late----> EXPIRED   (presented after expires_at)

All four targets are terminal. Presenting a ROTATED, REVOKED or EXPIRED
token that is still inside its lifetime is treated as theft: somebody else
holds a copy of a token that should be dead, so every session of that user
is revoked before TokenReuseDetected is raised.

The check order in refresh() is fixed: unknown -> expired -> reused -> rotate.
An expired token is reported as expired even if it was also rotated.

Layer rule: no imports from api/ or resources/.
"""

from __future__ import annotations

import logging

from auth import tokens
from auth.models import RefreshTokenRecord, TokenPair, TokenStatus, User
from auth.store import RefreshTokenStore, UserStore
from core import clock
from core.errors import TokenExpired, TokenInvalid, TokenReuseDetected

logger = logging.getLogger("tigra.auth")


class RotationProtocol:
    """Issues, rotates and revokes refresh-token sessions.

    Usage:
        protocol = RotationProtocol(users, refresh_tokens)
        pair = protocol.start_session(user)           # after login/register
        user, pair = protocol.refresh(pair.refresh_token)
        protocol.logout(pair.refresh_token)
    """

    def __init__(self, users: UserStore, refresh_tokens: RefreshTokenStore) -> None:
        self._users = users
        self._tokens = refresh_tokens

    def start_session(self, user: User) -> TokenPair:
        """Issue a new pair for user and persist the root record of a new chain."""
        pair = tokens.issue_pair(user)
        self._tokens.create(_record_for(user, pair))
        return pair

    def refresh(self, raw_token: str) -> tuple[User, TokenPair]:
        """Exchange a refresh token for a new pair. Returns (user, pair).

        Raises TokenInvalid, TokenExpired or TokenReuseDetected. Exactly one
        of any number of concurrent calls with the same token can succeed:
        the store's compare-and-swap decides the winner.
        """
        record = self._tokens.get_by_hash(tokens.hash_refresh_token(raw_token))
        if record is None:
            raise TokenInvalid("Refresh token is invalid.")

        if not clock.utcnow() < clock.from_iso(record.expires_at):
            if record.status is TokenStatus.ACTIVE:
                self._tokens.transition(record.id, TokenStatus.EXPIRED, "expired")
            raise TokenExpired("Refresh token has expired.")

        if record.status is not TokenStatus.ACTIVE:
            self._revoke_for_reuse(record)

        user = self._users.get_by_id(record.user_id)
        if user is None:
            # Owner was soft-deleted after the token was issued.
            self._tokens.transition(record.id, TokenStatus.REVOKED, "user_deleted")
            raise TokenInvalid("Refresh token is invalid.")

        # Role is re-read from the store, so role changes reach the next
        # access token at rotation time.
        pair = tokens.issue_pair(user)
        if self._tokens.rotate(record.id, _record_for(user, pair)) is None:
            # Another request rotated this record between our read and the CAS.
            self._revoke_for_reuse(record)
        return user, pair

    def logout(self, raw_token: str) -> None:
        """Revoke the presented refresh token.

        Idempotent and silent: unknown, expired, rotated or already revoked
        tokens are a no-op, so logout never reveals whether a token exists.
        """
        record = self._tokens.get_by_hash(tokens.hash_refresh_token(raw_token))
        if record is None:
            return
        if self._tokens.transition(record.id, TokenStatus.REVOKED, "logout"):
            logger.info("Session ended (user_id=%s)", record.user_id)

    def revoke_all(self, user_id: str, reason: str) -> int:
        """Revoke every active session of a user. Returns the number revoked."""
        return self._tokens.revoke_all_for_user(user_id, reason)

    def _revoke_for_reuse(self, record: RefreshTokenRecord) -> None:
        revoked = self.revoke_all(record.user_id, "reuse_detected")
        logger.warning(
            "Refresh token reuse detected (user_id=%s, record_id=%s, status=%s); revoked %d active session(s)",
            record.user_id,
            record.id,
            record.status.value,
            revoked,
        )
        raise TokenReuseDetected()


def _record_for(user: User, pair: TokenPair) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        user_id=user.id,
        token_hash=tokens.hash_refresh_token(pair.refresh_token),
        issued_at=clock.to_iso(clock.utcnow()),
        expires_at=clock.to_iso(pair.refresh_expires_at),
    )
