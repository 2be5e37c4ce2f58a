from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from relying_party.models import PresentationRequest, RevocationStatus, VerifierResult


class VerifierError(Exception):
    """
    The verification capability could not produce an answer (transport
    failure, HTTP error, unreadable response). Distinct from a presentation
    that was checked and rejected.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, text: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.text = text


class PresentationVerifier(Protocol):
    async def verify_presentation(
        self,
        presentation: Dict[str, Any],
        request: Optional[PresentationRequest],
    ) -> VerifierResult: ...

    async def check_revocations(self, credential_ids: List[str]) -> List[RevocationStatus]: ...

    async def aclose(self) -> None: ...


__all__ = ["PresentationVerifier", "VerifierError"]
