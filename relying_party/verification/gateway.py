"""
Verification gateway.

Builds presentation requests from the policy registry, forwards
presentations to the external verifier under a timeout and turns its
answer into a VerificationOutcome. Presentation requests and batch results
are cached in the key-value store; nothing else is kept between calls
apart from in-process statistics.
"""

from __future__ import annotations

import asyncio
import secrets
import time
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from relying_party.clock import Clock, utc_now
from relying_party.errors import (
    AppError,
    invalid_presentation,
    service_error,
    validation_error,
)
from relying_party.logging_config import logger
from relying_party.models import (
    BatchItemResult,
    BatchVerificationResult,
    FailureCode,
    PresentationRequest,
    RevocationStatus,
    VerificationFailure,
    VerificationOutcome,
    VerificationStatistics,
)
from relying_party.policy import PolicyRegistry
from relying_party.storage import KeyValueStore, StoreUnavailable
from relying_party.storage.records import (
    batch_result_key,
    presentation_request_key,
    store_get_json,
    store_set_json,
)

from .verifier import PresentationVerifier, VerifierError


class VerificationGateway:
    def __init__(
        self,
        verifier: PresentationVerifier,
        registry: PolicyRegistry,
        store: KeyValueStore,
        *,
        service_did: str,
        service_domain: str,
        timeout: float = 10.0,
        request_ttl: int = 300,
        batch_concurrency: int = 10,
        batch_result_ttl: int = 1800,
        clock: Optional[Clock] = None,
    ) -> None:
        self._verifier = verifier
        self._registry = registry
        self._store = store
        self._service_did = service_did
        self._service_domain = service_domain
        self._timeout = timeout
        self._request_ttl = request_ttl
        self._batch_concurrency = max(1, batch_concurrency)
        self._batch_result_ttl = batch_result_ttl
        self._clock = clock or utc_now
        self._stats = VerificationStatistics()
        self._total_time_ms = 0.0

    @property
    def registry(self) -> PolicyRegistry:
        return self._registry

    async def create_request(
        self, endpoint: str, domain: Optional[str] = None
    ) -> PresentationRequest:
        """
        Build and cache a presentation request for `endpoint`. Unknown
        endpoints raise a configuration error from the registry.
        """
        policy = self._registry.get(endpoint)
        now = self._clock()
        request = PresentationRequest(
            request_id=str(uuid.uuid4()),
            endpoint=endpoint,
            credential_types=list(policy.credential_types),
            constraints=list(policy.constraints),
            challenge=secrets.token_hex(32),
            domain=domain or self._service_domain,
            purpose=f"Access to {endpoint} endpoint",
            verifier=self._service_did,
            created_at=now,
            expires_at=now + timedelta(seconds=self._request_ttl),
        )
        try:
            await store_set_json(
                self._store,
                presentation_request_key(request.request_id),
                request.model_dump(mode="json", by_alias=True),
                ttl_seconds=self._request_ttl,
            )
        except StoreUnavailable as exc:
            raise service_error(
                "Could not store presentation request", context={"endpoint": endpoint}
            ) from exc
        logger.info(
            "Presentation request %s created for %s (%d constraints)",
            request.request_id,
            endpoint,
            len(request.constraints),
        )
        return request

    async def get_request(self, request_id: str) -> Optional[PresentationRequest]:
        try:
            data = await store_get_json(self._store, presentation_request_key(request_id))
        except StoreUnavailable as exc:
            raise service_error("Could not load presentation request") from exc
        if data is None:
            return None
        try:
            request = PresentationRequest.model_validate(data)
        except ValidationError:
            logger.warning("Discarding malformed presentation request %s", request_id)
            return None
        if request.is_expired(self._clock()):
            return None
        return request

    async def verify(
        self, presentation: Dict[str, Any], request: PresentationRequest
    ) -> VerificationOutcome:
        """
        Verify `presentation` against `request`.

        A rejected presentation raises INVALID_PRESENTATION carrying the
        verifier's failures; a verifier that cannot answer in time raises
        SERVICE_ERROR. Only a successful outcome is returned.
        """
        outcome = await self._verify_once(presentation, request)
        if not outcome.is_valid:
            logger.warning(
                "Presentation rejected for request %s: %s",
                request.request_id,
                [f.code for f in outcome.failures],
            )
            raise invalid_presentation(
                context={
                    "requestId": request.request_id,
                    "verificationErrors": [
                        f.model_dump(by_alias=True) for f in outcome.failures
                    ],
                }
            )
        logger.info(
            "Presentation verified for request %s (holder=%s, %d attributes)",
            request.request_id,
            outcome.holder_id,
            len(outcome.disclosed_attributes),
        )
        return outcome

    async def verify_request(
        self, presentation: Dict[str, Any], request_id: str
    ) -> tuple[PresentationRequest, VerificationOutcome]:
        """
        Verify against a previously issued request. The request is consumed
        on success, so its challenge cannot be replayed: when concurrent
        submissions race, only the one whose delete removes the key wins.
        """
        request = await self.get_request(request_id)
        if request is None:
            raise validation_error(
                "Invalid or expired presentation request",
                context={"requestId": request_id},
            )
        outcome = await self.verify(presentation, request)
        try:
            removed = await self._store.delete(presentation_request_key(request_id))
        except StoreUnavailable as exc:
            logger.error("Failed to consume presentation request %s: %s", request_id, exc)
            raise service_error(
                "Presentation request could not be consumed",
                context={"requestId": request_id},
            ) from exc
        if removed == 0:
            logger.warning("Presentation request %s was already used", request_id)
            raise validation_error(
                "Invalid or expired presentation request",
                context={"requestId": request_id},
            )
        return request, outcome

    async def verify_for_endpoint(
        self, presentation: Dict[str, Any], endpoint: str
    ) -> tuple[PresentationRequest, VerificationOutcome]:
        request = await self.create_request(endpoint)
        outcome = await self.verify(presentation, request)
        try:
            await self._store.delete(presentation_request_key(request.request_id))
        except StoreUnavailable as exc:
            logger.warning(
                "Failed to drop presentation request %s: %s", request.request_id, exc
            )
        return request, outcome

    async def batch_verify(self, presentations: List[Dict[str, Any]]) -> BatchVerificationResult:
        """
        Verify many presentations concurrently, at most `batch_concurrency`
        at a time. Per-item failures are reported, never raised.
        """
        started = time.perf_counter()
        semaphore = asyncio.Semaphore(self._batch_concurrency)

        async def _run(index: int, presentation: Dict[str, Any]) -> BatchItemResult:
            async with semaphore:
                item_started = time.perf_counter()
                outcome: Optional[VerificationOutcome] = None
                error: Optional[Dict[str, Any]] = None
                try:
                    outcome = await self._verify_once(presentation, None)
                except AppError as exc:
                    error = exc.to_response().model_dump(exclude_none=True)
                return BatchItemResult(
                    presentation_index=index,
                    outcome=outcome,
                    error=error,
                    processing_time_ms=_elapsed_ms(item_started),
                )

        results = await asyncio.gather(
            *(_run(i, p) for i, p in enumerate(presentations))
        )
        successful = sum(1 for r in results if r.succeeded)
        batch = BatchVerificationResult(
            batch_id=str(uuid.uuid4()),
            total=len(results),
            successful=successful,
            failed=len(results) - successful,
            processing_time_ms=_elapsed_ms(started),
            completed_at=self._clock(),
            results=list(results),
        )
        try:
            await store_set_json(
                self._store,
                batch_result_key(batch.batch_id),
                batch.model_dump(mode="json", by_alias=True),
                ttl_seconds=self._batch_result_ttl,
            )
        except StoreUnavailable as exc:
            logger.warning("Failed to cache batch result %s: %s", batch.batch_id, exc)
        logger.info(
            "Batch %s verified: %d/%d successful in %dms",
            batch.batch_id,
            batch.successful,
            batch.total,
            batch.processing_time_ms,
        )
        return batch

    async def get_batch_result(self, batch_id: str) -> Optional[BatchVerificationResult]:
        try:
            data = await store_get_json(self._store, batch_result_key(batch_id))
        except StoreUnavailable as exc:
            raise service_error("Could not load batch result") from exc
        if data is None:
            return None
        try:
            return BatchVerificationResult.model_validate(data)
        except ValidationError:
            logger.warning("Discarding malformed batch result %s", batch_id)
            return None

    async def check_revocations(self, credential_ids: List[str]) -> List[RevocationStatus]:
        """
        Revocation status per credential, in the order the ids were given.
        """
        try:
            statuses = await asyncio.wait_for(
                self._verifier.check_revocations(list(credential_ids)),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise service_error(
                "Revocation check timed out", context={"timeoutSeconds": self._timeout}
            ) from exc
        except VerifierError as exc:
            raise service_error(
                "Revocation check failed", context={"reason": str(exc)}
            ) from exc
        revoked = sum(1 for s in statuses if s.is_revoked)
        logger.info(
            "Revocation check for %d credentials: %d revoked", len(statuses), revoked
        )
        return statuses

    def statistics(self) -> VerificationStatistics:
        return self._stats.model_copy()

    async def _verify_once(
        self, presentation: Dict[str, Any], request: Optional[PresentationRequest]
    ) -> VerificationOutcome:
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                self._verifier.verify_presentation(presentation, request),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            self._record(False, started)
            logger.warning("Verifier timed out after %ss", self._timeout)
            raise service_error(
                "Presentation verification timed out",
                context={"timeoutSeconds": self._timeout},
            ) from exc
        except VerifierError as exc:
            self._record(False, started)
            raise service_error(
                "Presentation verification failed",
                context={"reason": str(exc), "verifierStatus": exc.status_code},
            ) from exc

        if not result.is_valid:
            failures = result.errors or [
                VerificationFailure(code=FailureCode.VERIFICATION_FAILED.value, message="Presentation rejected")
            ]
            outcome = VerificationOutcome.failure(failures)
        elif not result.holder_id:
            outcome = VerificationOutcome.failure(
                [
                    VerificationFailure(
                        code=FailureCode.VERIFICATION_FAILED.value,
                        message="Verifier did not identify the holder",
                    )
                ]
            )
        else:
            outcome = VerificationOutcome.success(
                result.holder_id, result.disclosed_attributes, result.credential_ids
            )
            if request is not None:
                outcome = self._enforce_request_policy(outcome, request)

        self._record(outcome.is_valid, started)
        return outcome

    def _enforce_request_policy(
        self, outcome: VerificationOutcome, request: PresentationRequest
    ) -> VerificationOutcome:
        if not self._registry.has(request.endpoint):
            return outcome
        evaluation = self._registry.evaluate(request.endpoint, outcome.disclosed_attributes)
        if evaluation.satisfied:
            return outcome
        failures = [
            VerificationFailure(
                code=FailureCode.MISSING_REQUIRED_ATTRIBUTE.value,
                message=f"Required attribute '{name}' was not disclosed",
                context={"attribute": name},
            )
            for name in evaluation.missing
        ]
        failures.extend(
            VerificationFailure(
                code=FailureCode.ATTRIBUTE_CONSTRAINT_VIOLATION.value,
                message=f"Attribute '{name}' does not satisfy the endpoint policy",
                context={"attribute": name},
            )
            for name in evaluation.violated
        )
        return VerificationOutcome.failure(failures)

    def _record(self, success: bool, started: float) -> None:
        stats = self._stats
        stats.total_verifications += 1
        if success:
            stats.successful_verifications += 1
        else:
            stats.failed_verifications += 1
        self._total_time_ms += (time.perf_counter() - started) * 1000
        stats.average_processing_time_ms = round(
            self._total_time_ms / stats.total_verifications, 2
        )
        stats.last_updated = self._clock()


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


__all__ = ["VerificationGateway"]
