"""
HTTP adapter for the external presentation verification service.

    POST {base}/presentations/verify
        {"presentation": ..., "request": ..., "trustedIssuers": [...]}
    POST {base}/credentials/revocation-status
        {"credentialIds": [...]} -> {"results": [{"credentialId", "isRevoked"}]}
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from relying_party.logging_config import logger
from relying_party.models import PresentationRequest, RevocationStatus, VerifierResult

from .verifier import VerifierError


class HttpPresentationVerifier:
    def __init__(
        self,
        base_url: str,
        *,
        trusted_issuers: Optional[List[str]] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._trusted_issuers = list(trusted_issuers or [])
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def verify_presentation(
        self,
        presentation: Dict[str, Any],
        request: Optional[PresentationRequest],
    ) -> VerifierResult:
        body: Dict[str, Any] = {
            "presentation": presentation,
            "trustedIssuers": self._trusted_issuers,
        }
        if request is not None:
            body["request"] = request.model_dump(mode="json", by_alias=True)
        payload = await self._post("/presentations/verify", body)
        try:
            return VerifierResult.model_validate(payload)
        except ValidationError as exc:
            raise VerifierError(
                "Verifier returned an unexpected response shape", text=str(exc)
            ) from exc

    async def check_revocations(self, credential_ids: List[str]) -> List[RevocationStatus]:
        payload = await self._post(
            "/credentials/revocation-status", {"credentialIds": list(credential_ids)}
        )
        raw_results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(raw_results, list):
            raise VerifierError("Verifier revocation response lacks 'results'")
        try:
            reported = {
                item.credential_id: item
                for item in (RevocationStatus.model_validate(r) for r in raw_results)
            }
        except ValidationError as exc:
            raise VerifierError(
                "Verifier returned malformed revocation entries", text=str(exc)
            ) from exc

        missing = [cid for cid in credential_ids if cid not in reported]
        if missing:
            raise VerifierError(
                f"Verifier did not report revocation status for {len(missing)} credential(s)"
            )
        # Answer in request order regardless of how the verifier ordered them.
        return [reported[cid] for cid in credential_ids]

    async def _post(self, path: str, body: Dict[str, Any]) -> Any:
        url = f"{self._base_url}{path}"
        try:
            resp = await self._client.post(url, json=body)
        except httpx.HTTPError as exc:
            logger.warning("Verifier request to %s failed: %s", url, exc)
            raise VerifierError(f"Verifier request failed: {exc}") from exc

        if resp.status_code >= 400:
            logger.warning(
                "Verifier HTTP error %s for %s; response=%s",
                resp.status_code,
                url,
                resp.text[:500],
            )
            raise VerifierError(
                f"Verifier HTTP error {resp.status_code}",
                status_code=resp.status_code,
                text=resp.text,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise VerifierError(
                "Verifier returned a non-JSON response",
                status_code=resp.status_code,
                text=resp.text,
            ) from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["HttpPresentationVerifier"]
