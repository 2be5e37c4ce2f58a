"""
Presentation verification and session management routes (`/auth`).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import Field, StrictInt, model_validator

from relying_party.auth import require_session
from relying_party.clock import Clock
from relying_party.deps import (
    get_clock,
    get_gateway,
    get_session_manager,
    get_settings,
    get_store,
)
from relying_party.errors import (
    authentication_error,
    session_expired,
    session_not_found,
    validation_error,
)
from relying_party.logging_config import logger
from relying_party.models import CamelModel, Session
from relying_party.policy import PolicyRegistry
from relying_party.sessions import SessionManager, SessionMetadataCache
from relying_party.settings import Settings
from relying_party.storage import KeyValueStore
from relying_party.storage.records import increment_counter
from relying_party.verification import VerificationGateway

router = APIRouter(prefix="/auth", tags=["auth"])


class PresentationRequestBody(CamelModel):
    endpoint: str = Field(..., min_length=1)
    domain: Optional[str] = None


class VerifyPresentationBody(CamelModel):
    presentation: Dict[str, Any]
    request_id: Optional[str] = None
    endpoint: Optional[str] = None
    duration: Optional[int] = Field(
        default=None, gt=0, description="Requested session lifetime in seconds"
    )

    @model_validator(mode="after")
    def _need_request_or_endpoint(self) -> "VerifyPresentationBody":
        if not self.request_id and not self.endpoint:
            raise ValueError("Either endpoint or requestId is required")
        return self


class BatchVerifyBody(CamelModel):
    presentations: List[Dict[str, Any]] = Field(..., min_length=1)


class BatchRevocationBody(CamelModel):
    credential_ids: List[str] = Field(..., min_length=1)


class ExtendSessionBody(CamelModel):
    additional_time: StrictInt = Field(..., description="Seconds to add to the session expiry")


def ensure_known_endpoint(registry: PolicyRegistry, endpoint: str) -> None:
    if not registry.has(endpoint):
        raise validation_error(
            f"No requirements defined for endpoint: {endpoint}",
            context={"endpoint": endpoint, "availableEndpoints": registry.endpoints()},
        )


def ensure_own_session(session: Session, session_id: str) -> None:
    if session.id != session_id:
        raise authentication_error(
            "Cannot access other user sessions", context={"sessionId": session_id}
        )


def session_view(session: Session) -> Dict[str, Any]:
    return session.model_dump(mode="json", by_alias=True)


@router.post("/request-presentation")
async def request_presentation(
    body: PresentationRequestBody,
    gateway: VerificationGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    ensure_known_endpoint(gateway.registry, body.endpoint)
    request = await gateway.create_request(body.endpoint, body.domain)
    return {
        "success": True,
        "presentationRequest": request.model_dump(mode="json", by_alias=True),
    }


@router.post("/verify-presentation")
@router.post("/verify-token", include_in_schema=False)
async def verify_presentation(
    body: VerifyPresentationBody,
    gateway: VerificationGateway = Depends(get_gateway),
    sessions: SessionManager = Depends(get_session_manager),
    store: KeyValueStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    if body.request_id:
        request, outcome = await gateway.verify_request(body.presentation, body.request_id)
        method = "presentation_request"
    else:
        ensure_known_endpoint(gateway.registry, body.endpoint or "")
        request, outcome = await gateway.verify_for_endpoint(body.presentation, body.endpoint or "")
        method = "legacy"
    await increment_counter(store, "verifications")

    session = await sessions.create(
        outcome,
        duration=body.duration,
        metadata={
            "endpoint": request.endpoint,
            "requestId": request.request_id,
            "verificationMethod": method,
            "serviceDID": settings.service_did,
            "verifiedAt": clock().isoformat(),
        },
        creation_method=method,
    )
    await increment_counter(store, "sessions")
    disclosure = "selective" if outcome.disclosed_attributes else "full"
    logger.info(
        "Presentation verified and session created for holder %s via %s",
        outcome.holder_id,
        request.endpoint,
    )
    return {
        "success": True,
        "sessionId": session.id,
        "expiresAt": session.expires_at.isoformat(),
        "expiresIn": session.remaining_seconds(clock()),
        "disclosureType": disclosure,
        "verifiedAttributes": sorted(outcome.disclosed_attributes),
    }


@router.post("/batch-verify")
async def batch_verify(
    body: BatchVerifyBody,
    gateway: VerificationGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    limit = settings.batch_max_presentations
    if len(body.presentations) > limit:
        raise validation_error(
            f"Maximum {limit} presentations allowed per batch",
            context={"count": len(body.presentations), "limit": limit},
        )
    result = await gateway.batch_verify(body.presentations)
    return {
        "success": True,
        "batchId": result.batch_id,
        "results": result.model_dump(mode="json", by_alias=True),
        "statistics": {
            "total": result.total,
            "successful": result.successful,
            "failed": result.failed,
            "successRate": result.successful / result.total * 100,
            "processingTimeMs": result.processing_time_ms,
            "averageTimePerPresentation": result.processing_time_ms / result.total,
        },
    }


@router.post("/batch-revocation")
async def batch_revocation(
    body: BatchRevocationBody,
    gateway: VerificationGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    limit = settings.batch_max_credential_ids
    if len(body.credential_ids) > limit:
        raise validation_error(
            f"Maximum {limit} credential IDs allowed per batch",
            context={"count": len(body.credential_ids), "limit": limit},
        )
    statuses = await gateway.check_revocations(body.credential_ids)
    revoked = sum(1 for s in statuses if s.is_revoked)
    total = len(statuses)
    return {
        "success": True,
        "results": [s.model_dump(by_alias=True) for s in statuses],
        "statistics": {
            "total": total,
            "revoked": revoked,
            "valid": total - revoked,
            "revocationRate": revoked / total * 100 if total else 0.0,
        },
    }


@router.get("/presentation/{presentation_id}")
async def presentation_status(
    presentation_id: str,
    gateway: VerificationGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    batch = await gateway.get_batch_result(presentation_id)
    if batch is not None:
        return {
            "id": presentation_id,
            "type": "batch_verification",
            "status": "completed",
            "result": batch.model_dump(mode="json", by_alias=True),
        }
    request = await gateway.get_request(presentation_id)
    if request is not None:
        return {
            "id": presentation_id,
            "type": "presentation_request",
            "status": "pending",
            "request": request.model_dump(mode="json", by_alias=True),
        }
    raise validation_error(
        "Presentation or batch result not found", context={"id": presentation_id}
    )


@router.get("/session/{session_id}/validate")
async def validate_session(
    session_id: str,
    sessions: SessionManager = Depends(get_session_manager),
) -> Dict[str, Any]:
    if not await sessions.validate(session_id):
        raise session_expired(context={"sessionId": session_id})
    session = await sessions.get(session_id)
    if session is None:
        raise session_not_found(context={"sessionId": session_id})
    metadata = await sessions.metadata.get(session_id)
    return {
        "success": True,
        "valid": True,
        "session": session_view(session),
        "cachedMetadata": metadata.model_dump(mode="json", by_alias=True) if metadata else None,
    }


@router.post("/session/{session_id}/extend")
async def extend_session(
    session_id: str,
    body: ExtendSessionBody,
    current: Session = Depends(require_session()),
    sessions: SessionManager = Depends(get_session_manager),
) -> Dict[str, Any]:
    ensure_own_session(current, session_id)
    if not await sessions.extend(session_id, body.additional_time):
        raise session_expired(context={"sessionId": session_id})
    extended = await sessions.get(session_id)
    if extended is None:
        raise session_not_found(context={"sessionId": session_id})
    return {
        "success": True,
        "sessionId": session_id,
        "additionalTime": body.additional_time,
        "newExpiresAt": extended.expires_at.isoformat(),
    }


@router.delete("/session/{session_id}")
async def invalidate_session(
    session_id: str,
    current: Session = Depends(require_session()),
    sessions: SessionManager = Depends(get_session_manager),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    ensure_own_session(current, session_id)
    if not await sessions.invalidate(session_id):
        raise session_not_found(context={"sessionId": session_id})
    return {
        "success": True,
        "sessionId": session_id,
        "invalidatedAt": clock().isoformat(),
    }


@router.get("/session/{session_id}")
async def get_session_details(
    session_id: str,
    current: Session = Depends(require_session()),
    sessions: SessionManager = Depends(get_session_manager),
) -> Dict[str, Any]:
    ensure_own_session(current, session_id)
    metadata = await sessions.metadata.get(session_id)
    return {
        "success": True,
        "session": session_view(current),
        "cachedMetadata": metadata.model_dump(mode="json", by_alias=True) if metadata else None,
    }


@router.get("/sessions")
async def list_sessions(
    current: Session = Depends(require_session()),
    sessions: SessionManager = Depends(get_session_manager),
) -> Dict[str, Any]:
    # Only sessions of the caller's holder are visible.
    holder_sessions = [
        s for s in await sessions.list_active() if s.holder_id == current.holder_id
    ]
    return {
        "success": True,
        "sessions": [
            {
                "id": s.id,
                "createdAt": s.created_at.isoformat(),
                "expiresAt": s.expires_at.isoformat(),
                "lastAccessedAt": s.last_accessed_at.isoformat(),
                "credentialCount": len(s.credential_ids),
                "attributeCount": len(s.attributes),
                "current": s.id == current.id,
            }
            for s in holder_sessions
        ],
    }


@router.get("/session/{session_id}/activity")
async def session_activity(
    session_id: str,
    current: Session = Depends(require_session()),
    sessions: SessionManager = Depends(get_session_manager),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    ensure_own_session(current, session_id)
    now = clock()
    metadata = await sessions.metadata.get(session_id)
    activity = SessionMetadataCache.activity_summary(metadata)
    activity.update(
        {
            "duration": current.duration_seconds(now),
            "timeToExpiry": current.remaining_seconds(now),
            "isExpired": current.is_expired(now),
        }
    )
    return {"success": True, "sessionId": session_id, "activity": activity}


__all__ = ["router", "ensure_known_endpoint"]
