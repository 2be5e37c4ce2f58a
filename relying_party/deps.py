"""
FastAPI dependencies resolving the service objects built by `create_app`.

Every component is constructed once per application and stored on
`app.state.services`; routes ask for what they need through these getters
so tests can swap any of them with `app.dependency_overrides`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from fastapi import Request
from redis.asyncio import Redis

from .clock import Clock
from .policy import PolicyRegistry
from .sessions import SessionManager, SessionSweeper
from .settings import Settings
from .storage import KeyValueStore
from .verification import PresentationVerifier, VerificationGateway

if TYPE_CHECKING:
    from .auth import AccessControl


@dataclass
class ServiceContainer:
    settings: Settings
    clock: Clock
    store: KeyValueStore
    registry: PolicyRegistry
    sessions: SessionManager
    verifier: PresentationVerifier
    gateway: VerificationGateway
    access: "AccessControl"
    sweeper: SessionSweeper
    redis: Optional[Redis] = None


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_settings(request: Request) -> Settings:
    return get_services(request).settings


def get_clock(request: Request) -> Clock:
    return get_services(request).clock


def get_store(request: Request) -> KeyValueStore:
    return get_services(request).store


def get_registry(request: Request) -> PolicyRegistry:
    return get_services(request).registry


def get_session_manager(request: Request) -> SessionManager:
    return get_services(request).sessions


def get_gateway(request: Request) -> VerificationGateway:
    return get_services(request).gateway


def get_access_control(request: Request) -> "AccessControl":
    return get_services(request).access


__all__ = [
    "ServiceContainer",
    "get_access_control",
    "get_clock",
    "get_gateway",
    "get_registry",
    "get_services",
    "get_session_manager",
    "get_settings",
    "get_store",
]
