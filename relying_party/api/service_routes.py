"""
Public service information routes: `/service/*`, the API root, credential
status and batch analytics.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from relying_party.clock import Clock
from relying_party.deps import (
    get_clock,
    get_gateway,
    get_registry,
    get_session_manager,
    get_settings,
    get_store,
)
from relying_party.errors import validation_error
from relying_party.policy import PolicyRegistry
from relying_party.sessions import SessionManager
from relying_party.settings import Settings
from relying_party.storage import KeyValueStore, ResilientKeyValueStore
from relying_party.storage.records import get_counters
from relying_party.verification import VerificationGateway

API_VERSION = "1.0.0"

router = APIRouter(prefix="/service", tags=["service"])
public_router = APIRouter(tags=["public"])


def _uptime(request: Request) -> float:
    started = getattr(request.app.state, "started_at", None)
    return round(time.monotonic() - started, 3) if started is not None else 0.0


def _session_config(settings: Settings) -> Dict[str, Any]:
    return {
        "defaultDuration": settings.session_default_duration,
        "maxDuration": settings.session_max_duration,
        "cleanupInterval": settings.session_cleanup_interval,
        "accessExtension": settings.session_access_extension,
    }


@router.get("/info")
async def service_info(
    request: Request,
    settings: Settings = Depends(get_settings),
    registry: PolicyRegistry = Depends(get_registry),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    return {
        "success": True,
        "service": {
            "serviceDID": settings.service_did,
            "serviceName": settings.service_name,
            "serviceDomain": settings.service_domain,
            "trustedIssuers": settings.get_trusted_issuers(),
            "endpoints": registry.endpoints(),
            "sessionConfig": _session_config(settings),
            "batchConfig": {
                "maxConcurrency": settings.batch_max_concurrency,
                "timeoutSeconds": settings.verification_timeout,
            },
            "version": API_VERSION,
            "apiVersion": "v1",
            "environment": settings.environment,
            "uptime": _uptime(request),
            "timestamp": clock().isoformat(),
        },
    }


@router.get("/health")
async def health(
    request: Request,
    settings: Settings = Depends(get_settings),
    store: KeyValueStore = Depends(get_store),
    gateway: VerificationGateway = Depends(get_gateway),
    clock: Clock = Depends(get_clock),
):
    started = time.perf_counter()
    store_ok = await store.ping()
    degraded = isinstance(store, ResilientKeyValueStore) and (store.degraded or not store_ok)
    # The memory fallback keeps the service usable, so a lost Redis only degrades it.
    status = "degraded" if degraded else ("healthy" if store_ok else "unhealthy")
    body = {
        "success": status != "unhealthy",
        "status": status,
        "timestamp": clock().isoformat(),
        "responseTime": round((time.perf_counter() - started) * 1000, 2),
        "checks": {
            "serviceProvider": {
                "status": "healthy",
                "serviceDID": settings.service_did,
                "trustedIssuers": len(settings.get_trusted_issuers()),
            },
            "sessionStore": {
                "status": "healthy" if store_ok else ("degraded" if degraded else "unhealthy"),
                "connected": store_ok,
                "singleProcess": degraded,
            },
            "verifier": {
                "status": "healthy",
                "statistics": gateway.statistics().model_dump(mode="json", by_alias=True),
            },
        },
        "uptime": _uptime(request),
    }
    if status == "unhealthy":
        return JSONResponse(status_code=503, content=body)
    return body


@router.get("/statistics")
async def statistics(
    request: Request,
    store: KeyValueStore = Depends(get_store),
    gateway: VerificationGateway = Depends(get_gateway),
    sessions: SessionManager = Depends(get_session_manager),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    counters = await get_counters(store, ["verifications", "sessions", "errors"])
    return {
        "success": True,
        "statistics": {
            "uptime": _uptime(request),
            "totalVerifications": counters["verifications"],
            "totalSessions": counters["sessions"],
            "totalErrors": counters["errors"],
            "activeSessions": len(await sessions.list_active()),
            "verificationStatistics": gateway.statistics().model_dump(
                mode="json", by_alias=True
            ),
            "timestamp": clock().isoformat(),
        },
    }


@router.get("/requirements")
async def requirements(
    endpoint: Optional[str] = Query(default=None),
    registry: PolicyRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    descriptions = registry.attribute_descriptions
    if endpoint is not None:
        if not registry.has(endpoint):
            raise validation_error(
                f"No requirements found for endpoint: {endpoint}",
                context={"endpoint": endpoint, "availableEndpoints": registry.endpoints()},
            )
        policy = registry.get(endpoint)
        return {
            "success": True,
            "endpoint": endpoint,
            "requirements": {
                "credentialTypes": list(policy.credential_types),
                "attributeConstraints": [
                    {
                        **c.model_dump(by_alias=True, exclude_none=True),
                        "description": c.description
                        or descriptions.get(c.name, "No description available"),
                    }
                    for c in policy.constraints
                ],
            },
        }

    return {
        "success": True,
        "endpoints": [
            {
                "endpoint": name,
                "credentialTypes": list(registry.get(name).credential_types),
                "requiredAttributes": registry.get(name).required_attributes,
                "optionalAttributes": registry.get(name).optional_attributes,
                "attributeConstraints": len(registry.get(name).constraints),
            }
            for name in registry.endpoints()
        ],
    }


@router.get("/trusted-issuers")
async def trusted_issuers(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    return {
        "success": True,
        "trustedIssuers": [
            {"did": did, "name": f"Issuer {did[-8:]}", "status": "active"}
            for did in settings.get_trusted_issuers()
        ],
    }


@router.get("/credential-types")
async def credential_types(registry: PolicyRegistry = Depends(get_registry)) -> Dict[str, Any]:
    return {
        "success": True,
        "supportedCredentialTypes": [
            {
                "type": credential_type,
                "description": registry.describe_credential_type(credential_type),
                "endpoints": registry.endpoints_for_credential_type(credential_type),
            }
            for credential_type in registry.credential_types()
        ],
    }


@router.get("/attributes")
async def attributes(
    attribute: Optional[str] = Query(default=None),
    registry: PolicyRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    descriptions = registry.attribute_descriptions
    if attribute is None:
        return {"success": True, "attributeDescriptions": dict(descriptions)}
    if attribute not in descriptions:
        raise validation_error(
            f"No description found for attribute: {attribute}",
            context={"attribute": attribute, "availableAttributes": sorted(descriptions)},
        )
    return {"success": True, "attribute": attribute, "description": descriptions[attribute]}


@public_router.get("/")
async def root(clock: Clock = Depends(get_clock), settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    return {
        "success": True,
        "message": f"{settings.service_name} API",
        "version": API_VERSION,
        "documentation": "/docs",
        "health": "/service/health",
        "timestamp": clock().isoformat(),
    }


@public_router.get("/credential/status/{credential_id}")
async def credential_status(
    credential_id: str,
    gateway: VerificationGateway = Depends(get_gateway),
    clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    statuses = await gateway.check_revocations([credential_id])
    is_revoked = statuses[0].is_revoked
    return {
        "success": True,
        "credentialId": credential_id,
        "isRevoked": is_revoked,
        "status": "revoked" if is_revoked else "valid",
        "checkedAt": clock().isoformat(),
    }


@public_router.get("/analytics/batch-stats")
async def batch_stats(gateway: VerificationGateway = Depends(get_gateway)) -> Dict[str, Any]:
    return {
        "success": True,
        "statistics": gateway.statistics().model_dump(mode="json", by_alias=True),
    }


__all__ = ["public_router", "router"]
