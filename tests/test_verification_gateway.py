import asyncio
from datetime import timedelta

import pytest

from fakes import T0, FakeVerifier, make_presentation
from relying_party.errors import AppError, ErrorKind
from relying_party.verification import VerificationGateway, VerifierError

SERVICE_DID = "did:key:z6MkServiceProvider"


def make_gateway(verifier, registry, store, clock, **kwargs) -> VerificationGateway:
    return VerificationGateway(
        verifier,
        registry,
        store,
        service_did=SERVICE_DID,
        service_domain="rp.example.com",
        clock=clock,
        **kwargs,
    )


@pytest.fixture
def gateway(verifier, registry, store, clock):
    return make_gateway(verifier, registry, store, clock)


@pytest.mark.asyncio
async def test_create_request_describes_endpoint_policy(gateway):
    request = await gateway.create_request("/profile")

    assert request.endpoint == "/profile"
    assert request.credential_types == ["BasicProfileCredential"]
    assert [c.name for c in request.constraints] == ["isOver18", "country", "givenName"]
    assert len(request.challenge) == 64
    assert request.domain == "rp.example.com"
    assert request.verifier == SERVICE_DID
    assert request.purpose == "Access to /profile endpoint"
    assert request.expires_at == T0 + timedelta(seconds=300)
    assert await gateway.get_request(request.request_id) == request


@pytest.mark.asyncio
async def test_requests_get_fresh_challenges(gateway):
    first = await gateway.create_request("/profile", "custom.example")
    second = await gateway.create_request("/profile")

    assert first.challenge != second.challenge
    assert first.request_id != second.request_id
    assert first.domain == "custom.example"


@pytest.mark.asyncio
async def test_create_request_for_unknown_endpoint(gateway):
    with pytest.raises(AppError) as exc_info:
        await gateway.create_request("/admin")

    assert exc_info.value.kind is ErrorKind.CONFIGURATION_ERROR


@pytest.mark.asyncio
async def test_expired_request_is_not_returned(gateway, clock):
    request = await gateway.create_request("/profile")

    clock.advance(300)

    assert await gateway.get_request(request.request_id) is None


@pytest.mark.asyncio
async def test_verify_returns_outcome(gateway, verifier):
    request = await gateway.create_request("/profile")

    outcome = await gateway.verify(make_presentation(), request)

    assert outcome.is_valid
    assert outcome.holder_id == "did:example:alice"
    assert outcome.disclosed_attributes["country"] == "US"
    assert verifier.calls[0][1] == request


@pytest.mark.asyncio
async def test_rejected_presentation_raises_invalid_presentation(gateway):
    request = await gateway.create_request("/profile")
    presentation = make_presentation(
        errors=[{"code": "EXPIRED_CREDENTIAL", "message": "Credential expired"}]
    )

    with pytest.raises(AppError) as exc_info:
        await gateway.verify(presentation, request)

    error = exc_info.value
    assert error.kind is ErrorKind.INVALID_PRESENTATION
    assert error.status_code == 400
    assert [e["code"] for e in error.context["verificationErrors"]] == ["EXPIRED_CREDENTIAL"]


@pytest.mark.asyncio
async def test_disclosed_attributes_must_meet_request_policy(gateway):
    request = await gateway.create_request("/profile")
    presentation = make_presentation({"isOver18": True, "country": "MX"})

    with pytest.raises(AppError) as exc_info:
        await gateway.verify(presentation, request)

    errors = exc_info.value.context["verificationErrors"]
    assert errors[0]["code"] == "ATTRIBUTE_CONSTRAINT_VIOLATION"
    assert errors[0]["context"] == {"attribute": "country"}


@pytest.mark.asyncio
async def test_verifier_timeout_is_a_service_error(registry, store, clock):
    gateway = make_gateway(FakeVerifier(delay=0.5), registry, store, clock, timeout=0.01)
    request = await gateway.create_request("/profile")

    with pytest.raises(AppError) as exc_info:
        await gateway.verify(make_presentation(), request)

    assert exc_info.value.kind is ErrorKind.SERVICE_ERROR
    assert gateway.statistics().failed_verifications == 1


@pytest.mark.asyncio
async def test_verifier_failure_is_a_service_error(registry, store, clock):
    verifier = FakeVerifier(error=VerifierError("boom", status_code=502))
    gateway = make_gateway(verifier, registry, store, clock)

    with pytest.raises(AppError) as exc_info:
        await gateway.verify_for_endpoint(make_presentation(), "/profile")

    assert exc_info.value.kind is ErrorKind.SERVICE_ERROR
    assert exc_info.value.context["verifierStatus"] == 502


@pytest.mark.asyncio
async def test_verify_request_consumes_the_request(gateway):
    request = await gateway.create_request("/profile")

    used, outcome = await gateway.verify_request(make_presentation(), request.request_id)

    assert used.request_id == request.request_id
    assert outcome.is_valid
    with pytest.raises(AppError) as exc_info:
        await gateway.verify_request(make_presentation(), request.request_id)
    assert exc_info.value.kind is ErrorKind.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_concurrent_submissions_consume_request_once(registry, store, clock):
    gateway = make_gateway(FakeVerifier(delay=0.05), registry, store, clock)
    request = await gateway.create_request("/profile")

    results = await asyncio.gather(
        gateway.verify_request(make_presentation(), request.request_id),
        gateway.verify_request(make_presentation(), request.request_id),
        return_exceptions=True,
    )

    accepted = [r for r in results if isinstance(r, tuple)]
    rejected = [r for r in results if isinstance(r, AppError)]
    assert len(accepted) == 1
    assert len(rejected) == 1
    assert rejected[0].kind is ErrorKind.VALIDATION_ERROR
    assert await gateway.get_request(request.request_id) is None


@pytest.mark.asyncio
async def test_batch_verify_reports_each_item(registry, store, clock):
    verifier = FakeVerifier(delay=0.01)
    gateway = make_gateway(verifier, registry, store, clock, batch_concurrency=2)
    presentations = [
        make_presentation(),
        make_presentation(errors=["signature mismatch"]),
        make_presentation(holder="did:example:bob"),
        make_presentation(),
    ]

    batch = await gateway.batch_verify(presentations)

    assert batch.total == 4
    assert batch.successful == 3
    assert batch.failed == 1
    assert [r.presentation_index for r in batch.results] == [0, 1, 2, 3]
    assert batch.results[1].outcome.failures[0].message == "signature mismatch"
    assert verifier.max_active <= 2
    cached = await gateway.get_batch_result(batch.batch_id)
    assert cached.batch_id == batch.batch_id
    assert cached.successful == 3


@pytest.mark.asyncio
async def test_check_revocations_preserves_order(registry, store, clock):
    gateway = make_gateway(FakeVerifier(revoked=("b",)), registry, store, clock)

    statuses = await gateway.check_revocations(["c", "b", "a"])

    assert [(s.credential_id, s.is_revoked) for s in statuses] == [
        ("c", False),
        ("b", True),
        ("a", False),
    ]


@pytest.mark.asyncio
async def test_statistics_count_outcomes(gateway):
    request = await gateway.create_request("/profile")
    await gateway.verify(make_presentation(), request)
    with pytest.raises(AppError):
        await gateway.verify(make_presentation(errors=["nope"]), request)

    stats = gateway.statistics()

    assert stats.total_verifications == 2
    assert stats.successful_verifications == 1
    assert stats.failed_verifications == 1
    assert stats.last_updated == T0
