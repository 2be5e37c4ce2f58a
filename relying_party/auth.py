"""
Access control for protected routes.

Each protected request goes through the same gate: bearer token, session
validity, session lookup, optional endpoint policy and optional sliding
extension. Every failure ends the request; nothing is retried here.
"""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import Header, Request

from relying_party.errors import (
    AppError,
    authentication_error,
    session_expired,
    session_not_found,
    validation_error,
)
from relying_party.logging_config import logger
from relying_party.models import PolicyEvaluation, Session
from relying_party.policy import PolicyRegistry
from relying_party.sessions import SessionManager

from .deps import get_access_control

MALFORMED_HEADER_MESSAGE = (
    "Invalid Authorization header format. Expected: Bearer <sessionId>"
)


class AccessControl:
    def __init__(
        self,
        sessions: SessionManager,
        registry: PolicyRegistry,
        *,
        access_extension: int = 300,
    ) -> None:
        self._sessions = sessions
        self._registry = registry
        self.access_extension = access_extension

    @staticmethod
    def extract_token(authorization: Optional[str]) -> str:
        if authorization is None or not authorization.strip():
            raise authentication_error(
                "Missing Authorization header", context={"reason": "missing"}
            )
        parts = authorization.split(" ")
        if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
            raise authentication_error(
                MALFORMED_HEADER_MESSAGE, context={"reason": "malformed"}
            )
        return parts[1]

    async def authenticate(
        self, authorization: Optional[str], *, endpoint: Optional[str] = None
    ) -> Session:
        token = self.extract_token(authorization)
        if not await self._sessions.validate(token):
            raise session_expired("Session has expired or is invalid")
        session = await self._sessions.get(token, touch=True)
        if session is None:
            raise session_not_found()
        await self._sessions.metadata.record_access(session.id, endpoint)
        return session

    def check_policy(self, session: Session, endpoint: str) -> PolicyEvaluation:
        evaluation = self._registry.evaluate(endpoint, session.attributes)
        if not evaluation.satisfied:
            logger.info(
                "Session %s denied for %s: missing=%s violated=%s",
                session.id,
                endpoint,
                evaluation.missing,
                evaluation.violated,
            )
            raise validation_error(
                "Session attributes do not satisfy the requirements of this endpoint",
                context={
                    "endpoint": endpoint,
                    "missingAttributes": evaluation.missing,
                    "violatedAttributes": evaluation.violated,
                    "availableAttributes": sorted(session.attributes),
                },
            )
        return evaluation

    async def extend_on_access(self, session: Session, seconds: Optional[int] = None) -> bool:
        """
        Slide the session expiry forward. Failures are logged and never
        block the request.
        """
        try:
            return await self._sessions.extend(session.id, seconds or self.access_extension)
        except AppError as exc:
            logger.warning("Failed to extend session %s on access: %s", session.id, exc.message)
            return False

    async def authorize(
        self,
        authorization: Optional[str],
        *,
        endpoint: Optional[str] = None,
        policy: Optional[str] = None,
        extend: bool = False,
    ) -> Session:
        session = await self.authenticate(authorization, endpoint=endpoint)
        if policy is not None:
            self.check_policy(session, policy)
        if extend:
            await self.extend_on_access(session)
        return session


def require_session(
    *, policy: Optional[str] = None, extend: bool = False
) -> Callable[..., Session]:
    """
    Build a dependency that authenticates the caller and, optionally,
    enforces the policy registered for `policy` and extends the session.
    The session is also attached to `request.state.session`.
    """

    async def _dependency(
        request: Request,
        authorization: Optional[str] = Header(default=None),
    ) -> Session:
        access = get_access_control(request)
        session = await access.authorize(
            authorization,
            endpoint=request.url.path,
            policy=policy,
            extend=extend,
        )
        request.state.session = session
        return session

    return _dependency


__all__ = ["AccessControl", "MALFORMED_HEADER_MESSAGE", "require_session"]
