from datetime import timedelta
from typing import Any, Dict, Optional

import pytest
from fastapi.testclient import TestClient

from fakes import FINANCIAL_ATTRIBUTES, T0, make_presentation
from relying_party.auth import MALFORMED_HEADER_MESSAGE
from relying_party.routes import create_app
from relying_party.settings import Settings
from relying_party.verification import VerifierError

PREMIUM_ATTRIBUTES = {
    "isOver18": True,
    "country": "US",
    "subscriptionStatus": "premium",
    "subscriptionExpiry": "2030-01-01T00:00:00Z",
}


@pytest.fixture
def client(clock, store, verifier):
    settings = Settings(
        session_store="memory",
        session_cleanup_interval=0,
        service_domain="rp.example.com",
    )
    app = create_app(settings, store=store, verifier=verifier, clock=clock)
    with TestClient(app) as test_client:
        yield test_client


def bearer(session_id: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {session_id}"}


def open_session(
    client: TestClient,
    attributes: Optional[Dict[str, Any]] = None,
    *,
    endpoint: str = "/profile",
    holder: str = "did:example:alice",
) -> str:
    resp = client.post("/auth/request-presentation", json={"endpoint": endpoint})
    assert resp.status_code == 200, resp.text
    request_id = resp.json()["presentationRequest"]["requestId"]
    resp = client.post(
        "/auth/verify-presentation",
        json={
            "presentation": make_presentation(attributes, holder=holder),
            "requestId": request_id,
        },
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["sessionId"]


def test_presentation_flow_grants_profile_access(client):
    resp = client.post("/auth/request-presentation", json={"endpoint": "/profile"})
    request = resp.json()["presentationRequest"]
    assert request["domain"] == "rp.example.com"
    assert request["credentialTypes"] == ["BasicProfileCredential"]

    resp = client.post(
        "/auth/verify-presentation",
        json={"presentation": make_presentation(), "requestId": request["requestId"]},
    )
    body = resp.json()
    assert body["success"] is True
    assert body["expiresIn"] == 3600
    assert body["expiresAt"] == (T0 + timedelta(seconds=3600)).isoformat()
    assert body["verifiedAttributes"] == ["country", "givenName", "isOver18"]

    resp = client.get("/profile/", headers=bearer(body["sessionId"]))
    assert resp.status_code == 200
    profile = resp.json()["profile"]
    assert profile["id"] == "did:example:alice"
    assert profile["attributes"]["country"] == "US"
    assert profile["verificationLevel"] == "verified"
    assert profile["sessionInfo"]["sessionId"] == body["sessionId"]


def test_endpoint_shortcut_verifies_without_prior_request(client):
    resp = client.post(
        "/auth/verify-presentation",
        json={"presentation": make_presentation(), "endpoint": "/profile"},
    )

    assert resp.status_code == 200
    assert resp.json()["sessionId"]


def test_missing_authorization_header(client):
    resp = client.get("/profile/")

    assert resp.status_code == 401
    body = resp.json()
    assert body["code"] == "AUTHENTICATION_ERROR"
    assert body["message"] == "Missing Authorization header"
    assert body["status"] == 401


def test_malformed_authorization_header(client):
    resp = client.get("/profile/", headers={"Authorization": "Token abc"})

    assert resp.status_code == 401
    assert resp.json()["message"] == MALFORMED_HEADER_MESSAGE


def test_profile_is_served_without_trailing_slash(client):
    session_id = open_session(client)

    resp = client.get("/profile", headers=bearer(session_id), follow_redirects=False)

    assert resp.status_code == 200, resp.text
    assert resp.json()["profile"]["id"] == "did:example:alice"


def test_expired_session_is_rejected(client, clock):
    session_id = open_session(client)

    clock.advance(3600)
    resp = client.get("/profile/", headers=bearer(session_id))

    assert resp.status_code == 401
    assert resp.json()["code"] == "SESSION_EXPIRED"


def test_policy_denial_names_missing_attributes(client):
    session_id = open_session(client)

    resp = client.get("/profile/financial", headers=bearer(session_id))

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["context"]["missingAttributes"] == ["isOver21", "creditScore"]


def test_premium_profile(client):
    session_id = open_session(client, PREMIUM_ATTRIBUTES, endpoint="/premium")

    resp = client.get("/profile/premium", headers=bearer(session_id))

    assert resp.status_code == 200
    features = resp.json()["profile"]["premiumFeatures"]
    assert features["subscriptionStatus"] == "premium"
    assert features["premiumServices"] == ["Enhanced Profile", "Priority Support"]


def test_premium_profile_with_lapsed_subscription(client):
    attributes = {**PREMIUM_ATTRIBUTES, "subscriptionExpiry": "2023-12-31T00:00:00Z"}
    session_id = open_session(client, attributes, endpoint="/premium")

    resp = client.get("/profile/premium", headers=bearer(session_id))

    assert resp.status_code == 400
    assert resp.json()["message"] == "Subscription has expired"


def test_age_verification(client):
    session_id = open_session(client, {"age": 25}, endpoint="/verify-age")

    resp = client.get("/profile/verify-age?requiredAge=21", headers=bearer(session_id))
    assert resp.status_code == 200
    check = resp.json()["ageVerification"]
    assert check == {
        "verified": True,
        "requiredAge": 21,
        "hasExactAge": True,
        "method": "age",
        "actualAge": 25,
    }

    resp = client.get("/profile/verify-age?requiredAge=200", headers=bearer(session_id))
    assert resp.status_code == 400


def test_financial_profile(client):
    session_id = open_session(client, FINANCIAL_ATTRIBUTES, endpoint="/financial")

    resp = client.get("/profile/financial", headers=bearer(session_id))

    assert resp.status_code == 200
    qualifications = resp.json()["financialProfile"]["qualifications"]
    assert qualifications["creditTier"] == "good"
    assert qualifications["riskLevel"] == "low"
    assert qualifications["incomeRange"] == "$75K - $100K"


def test_profile_access_slides_expiry(client, clock):
    session_id = open_session(client)
    client.get("/profile/", headers=bearer(session_id))

    clock.advance(3700)
    resp = client.get("/profile/", headers=bearer(session_id))

    assert resp.status_code == 200


def test_extend_own_session(client):
    session_id = open_session(client)

    resp = client.post(
        f"/auth/session/{session_id}/extend",
        json={"additionalTime": 600},
        headers=bearer(session_id),
    )

    assert resp.status_code == 200
    assert resp.json()["newExpiresAt"] == (T0 + timedelta(seconds=4200)).isoformat()


def test_extend_rejects_bad_amounts(client):
    session_id = open_session(client)

    for amount in (0, -1, "soon"):
        resp = client.post(
            f"/auth/session/{session_id}/extend",
            json={"additionalTime": amount},
            headers=bearer(session_id),
        )
        assert resp.status_code == 400, amount
        assert resp.json()["code"] == "VALIDATION_ERROR"


def test_cannot_manage_other_sessions(client):
    mine = open_session(client)
    theirs = open_session(client, holder="did:example:bob")

    resp = client.post(
        f"/auth/session/{theirs}/extend", json={"additionalTime": 60}, headers=bearer(mine)
    )
    assert resp.status_code == 401
    resp = client.delete(f"/auth/session/{theirs}", headers=bearer(mine))
    assert resp.status_code == 401


def test_logout_invalidates_session(client):
    session_id = open_session(client)

    resp = client.delete(f"/auth/session/{session_id}", headers=bearer(session_id))
    assert resp.status_code == 200

    resp = client.get("/profile/", headers=bearer(session_id))
    assert resp.status_code == 401


def test_session_validation_is_public(client):
    session_id = open_session(client)

    resp = client.get(f"/auth/session/{session_id}/validate")
    assert resp.status_code == 200
    assert resp.json()["valid"] is True
    assert resp.json()["session"]["holderId"] == "did:example:alice"

    resp = client.get("/auth/session/unknown/validate")
    assert resp.status_code == 401


def test_list_sessions_shows_only_same_holder(client):
    first = open_session(client)
    second = open_session(client)
    open_session(client, holder="did:example:bob")

    resp = client.get("/auth/sessions", headers=bearer(first))

    listed = resp.json()["sessions"]
    assert {s["id"] for s in listed} == {first, second}
    assert [s["current"] for s in listed if s["id"] == first] == [True]


def test_rejected_presentation(client):
    resp = client.post("/auth/request-presentation", json={"endpoint": "/profile"})
    request_id = resp.json()["presentationRequest"]["requestId"]

    resp = client.post(
        "/auth/verify-presentation",
        json={
            "presentation": make_presentation(
                errors=[{"code": "REVOKED_CREDENTIAL", "message": "Credential revoked"}]
            ),
            "requestId": request_id,
        },
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "INVALID_PRESENTATION"
    assert body["context"]["verificationErrors"][0]["code"] == "REVOKED_CREDENTIAL"


def test_request_ids_cannot_be_replayed(client):
    resp = client.post("/auth/request-presentation", json={"endpoint": "/profile"})
    request_id = resp.json()["presentationRequest"]["requestId"]
    payload = {"presentation": make_presentation(), "requestId": request_id}

    assert client.post("/auth/verify-presentation", json=payload).status_code == 200
    resp = client.post("/auth/verify-presentation", json=payload)

    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid or expired presentation request"


def test_unknown_endpoint_lists_available_ones(client):
    resp = client.post("/auth/request-presentation", json={"endpoint": "/admin"})

    assert resp.status_code == 400
    assert "/profile" in resp.json()["context"]["availableEndpoints"]


def test_verify_requires_request_or_endpoint(client):
    resp = client.post("/auth/verify-presentation", json={"presentation": make_presentation()})

    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


def test_verifier_outage_is_a_service_error(client, verifier):
    verifier.error = VerifierError("verifier down")

    resp = client.post(
        "/auth/verify-presentation",
        json={"presentation": make_presentation(), "endpoint": "/profile"},
    )

    assert resp.status_code == 500
    assert resp.json()["code"] == "SERVICE_ERROR"
    assert "stack" not in resp.json()


def test_batch_verify_and_lookup(client):
    resp = client.post(
        "/auth/batch-verify",
        json={"presentations": [make_presentation(), make_presentation(errors=["bad"])]},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["statistics"]["successful"] == 1
    assert body["statistics"]["failed"] == 1

    resp = client.get(f"/auth/presentation/{body['batchId']}")
    assert resp.json()["type"] == "batch_verification"


def test_batch_revocation(client, verifier):
    verifier.revoked = {"b"}

    resp = client.post("/auth/batch-revocation", json={"credentialIds": ["a", "b"]})

    body = resp.json()
    assert body["results"] == [
        {"credentialId": "a", "isRevoked": False},
        {"credentialId": "b", "isRevoked": True},
    ]
    assert body["statistics"]["revoked"] == 1


def test_service_endpoints(client):
    open_session(client)

    health = client.get("/service/health").json()
    assert health["status"] == "healthy"

    stats = client.get("/service/statistics").json()["statistics"]
    assert stats["totalVerifications"] == 1
    assert stats["totalSessions"] == 1
    assert stats["activeSessions"] == 1

    requirements = client.get("/service/requirements", params={"endpoint": "/financial"}).json()
    names = [c["name"] for c in requirements["requirements"]["attributeConstraints"]]
    assert names == ["isOver21", "country", "creditScore", "income"]

    assert client.get("/service/requirements", params={"endpoint": "/nope"}).status_code == 400
    assert client.get("/service/attributes", params={"attribute": "age"}).status_code == 200


def test_profile_activity_and_preferences(client):
    session_id = open_session(client)
    client.get("/profile/", headers=bearer(session_id))

    activity = client.get("/profile/activity", headers=bearer(session_id)).json()["activity"]
    assert activity["accessCount"] == 2
    assert activity["endpointsAccessed"] == ["/profile/", "/profile/activity"]
    assert activity["extensionCount"] == 2

    resp = client.put("/profile/preferences", headers=bearer(session_id))
    assert resp.status_code == 400
