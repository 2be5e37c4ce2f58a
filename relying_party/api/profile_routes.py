"""
Sample protected resources (`/profile`) rendered from session attributes.

Every route passes through the access gate and slides the session expiry
forward on access.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from relying_party.auth import require_session
from relying_party.clock import Clock
from relying_party.deps import get_clock, get_session_manager, get_store
from relying_party.errors import validation_error
from relying_party.logging_config import logger
from relying_party.models import Session
from relying_party.policy.tiers import (
    check_subscription,
    credit_tier,
    financial_services,
    income_range,
    parse_age_threshold,
    risk_level,
    verification_level,
    verify_age,
)
from relying_party.sessions import SessionManager, SessionMetadataCache
from relying_party.storage import KeyValueStore
from relying_party.storage.records import increment_counter

router = APIRouter(prefix="/profile", tags=["profile"])


def _session_info(session: Session) -> Dict[str, Any]:
    return {
        "sessionId": session.id,
        "createdAt": session.created_at.isoformat(),
        "expiresAt": session.expires_at.isoformat(),
        "credentialIds": list(session.credential_ids),
    }


@router.get("")
@router.get("/", include_in_schema=False)
async def get_profile(
    session: Session = Depends(require_session(policy="/profile", extend=True)),
    store: KeyValueStore = Depends(get_store),
) -> Dict[str, Any]:
    await increment_counter(store, "profile_access")
    logger.info(
        "Profile accessed by session %s (%d attributes)", session.id, len(session.attributes)
    )
    return {
        "success": True,
        "profile": {
            "id": session.holder_id,
            "attributes": session.attributes,
            "verificationLevel": verification_level(session.attributes),
            "sessionInfo": _session_info(session),
        },
    }


@router.get("/premium")
async def get_premium_profile(
    session: Session = Depends(require_session(policy="/premium", extend=True)),
    store: KeyValueStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    access = check_subscription(session.attributes, clock())
    await increment_counter(store, "premium_profile_access")
    logger.info("Premium profile accessed by session %s (%s)", session.id, access.status)
    return {
        "success": True,
        "profile": {
            "id": session.holder_id,
            "attributes": session.attributes,
            "premiumFeatures": {
                "subscriptionStatus": access.status,
                "subscriptionExpiry": access.expires_at.isoformat() if access.expires_at else None,
                "premiumServices": access.services,
            },
            "verificationLevel": verification_level(session.attributes),
            "sessionInfo": _session_info(session),
        },
    }


@router.get("/verify-age")
async def age_verification(
    required_age: Optional[str] = Query(default=None, alias="requiredAge"),
    session: Session = Depends(require_session(extend=True)),
    store: KeyValueStore = Depends(get_store),
) -> Dict[str, Any]:
    threshold = parse_age_threshold(required_age)
    check = verify_age(session.attributes, threshold)
    await increment_counter(store, "age_verifications")
    logger.info(
        "Age verification for session %s: required=%s verified=%s method=%s",
        session.id,
        threshold,
        check.verified,
        check.method,
    )
    result: Dict[str, Any] = {
        "verified": check.verified,
        "requiredAge": check.required_age,
        "hasExactAge": check.has_exact_age,
        "method": check.method,
        "actualAge": check.actual_age,
    }
    return {"success": True, "ageVerification": result}


@router.get("/financial")
async def get_financial_profile(
    session: Session = Depends(require_session(policy="/financial", extend=True)),
    store: KeyValueStore = Depends(get_store),
) -> Dict[str, Any]:
    attributes = session.attributes
    score = attributes["creditScore"]
    income = attributes.get("income")
    await increment_counter(store, "financial_profile_access")
    logger.info(
        "Financial profile accessed by session %s (income disclosed=%s)",
        session.id,
        income is not None,
    )
    qualifications: Dict[str, Any] = {
        "ageVerified": attributes.get("isOver21") is True,
        "creditScoreVerified": True,
        "incomeVerified": income is not None,
        "creditScore": score,
        "creditTier": credit_tier(score).value,
        "riskLevel": risk_level(score).value,
    }
    if income is not None:
        qualifications["incomeRange"] = income_range(income)
    return {
        "success": True,
        "financialProfile": {
            "id": session.holder_id,
            "qualifications": qualifications,
            "availableServices": financial_services(attributes),
            "verificationLevel": verification_level(attributes),
        },
    }


@router.get("/preferences")
async def get_preferences(
    session: Session = Depends(require_session(extend=True)),
) -> Dict[str, Any]:
    attributes = session.attributes
    return {
        "success": True,
        "preferences": {
            "personalizedName": attributes.get("givenName"),
            "country": attributes.get("country"),
            "hasContact": bool(attributes.get("emailAddress") or attributes.get("phoneNumber")),
        },
    }


@router.put("/preferences")
async def update_preferences(
    session: Session = Depends(require_session()),
) -> Dict[str, Any]:
    # Attributes come from credentials and cannot be edited here.
    raise validation_error(
        "Preference updates require credential re-issuance. Contact your identity provider.",
        context={"sessionId": session.id},
    )


@router.get("/activity")
async def get_activity(
    session: Session = Depends(require_session(extend=True)),
    sessions: SessionManager = Depends(get_session_manager),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    now = clock()
    metadata = await sessions.metadata.get(session.id)
    activity = SessionMetadataCache.activity_summary(metadata)
    activity.update(
        {
            "sessionDuration": session.duration_seconds(now),
            "timeRemaining": session.remaining_seconds(now),
            "lastActivity": session.last_accessed_at.isoformat(),
        }
    )
    return {"success": True, "activity": activity}


__all__ = ["router"]
