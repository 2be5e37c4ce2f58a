from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, ConfigDict, Field, field_validator

from .base import CamelModel
from .policy import AttributeConstraint, AttributeMap


class FailureCode(str, Enum):
    EXPIRED_CREDENTIAL = "EXPIRED_CREDENTIAL"
    REVOKED_CREDENTIAL = "REVOKED_CREDENTIAL"
    UNTRUSTED_ISSUER = "UNTRUSTED_ISSUER"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    MISSING_REQUIRED_ATTRIBUTE = "MISSING_REQUIRED_ATTRIBUTE"
    ATTRIBUTE_CONSTRAINT_VIOLATION = "ATTRIBUTE_CONSTRAINT_VIOLATION"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"


class VerificationFailure(CamelModel):
    # Codes outside FailureCode are kept verbatim.
    code: str
    message: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)


class VerificationOutcome(CamelModel):
    """
    Result of one verification attempt. On success it carries the holder
    and the disclosed attributes; on failure an ordered list of reasons.
    """

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    holder_id: Optional[str] = None
    credential_ids: List[str] = Field(default_factory=list)
    disclosed_attributes: AttributeMap = Field(default_factory=dict)
    failures: List[VerificationFailure] = Field(default_factory=list)

    @classmethod
    def success(
        cls,
        holder_id: str,
        disclosed_attributes: AttributeMap,
        credential_ids: Optional[List[str]] = None,
    ) -> "VerificationOutcome":
        return cls(
            is_valid=True,
            holder_id=holder_id,
            credential_ids=list(credential_ids or []),
            disclosed_attributes=dict(disclosed_attributes),
        )

    @classmethod
    def failure(cls, failures: List[VerificationFailure]) -> "VerificationOutcome":
        return cls(is_valid=False, failures=list(failures))


class PresentationRequest(CamelModel):
    request_id: str
    endpoint: str
    credential_types: List[str] = Field(default_factory=list)
    constraints: List[AttributeConstraint] = Field(default_factory=list)
    challenge: str
    domain: str
    purpose: str = ""
    verifier: Optional[str] = None
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class VerifierResult(CamelModel):
    """
    Response body of the external verification service.
    """

    model_config = ConfigDict(extra="ignore")

    is_valid: bool = Field(
        ..., validation_alias=AliasChoices("isValid", "valid", "is_valid")
    )
    holder_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("holderId", "holderDID", "holder", "holder_id"),
    )
    credential_ids: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("credentialIds", "credential_ids"),
    )
    disclosed_attributes: AttributeMap = Field(
        default_factory=dict,
        validation_alias=AliasChoices("disclosedAttributes", "disclosed_attributes"),
    )
    errors: List[VerificationFailure] = Field(default_factory=list)

    @field_validator("errors", mode="before")
    @classmethod
    def _coerce_plain_messages(cls, value: Any) -> Any:
        # Some verifiers report failures as bare strings.
        if not isinstance(value, list):
            return value
        return [
            {"code": "VERIFICATION_FAILED", "message": item} if isinstance(item, str) else item
            for item in value
        ]


class RevocationStatus(CamelModel):
    credential_id: str
    is_revoked: bool


class BatchItemResult(CamelModel):
    presentation_index: int
    outcome: Optional[VerificationOutcome] = None
    error: Optional[Dict[str, Any]] = None
    processing_time_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome is not None and self.outcome.is_valid


class BatchVerificationResult(CamelModel):
    batch_id: str
    total: int
    successful: int
    failed: int
    processing_time_ms: int
    completed_at: datetime
    results: List[BatchItemResult] = Field(default_factory=list)


class VerificationStatistics(CamelModel):
    total_verifications: int = 0
    successful_verifications: int = 0
    failed_verifications: int = 0
    average_processing_time_ms: float = 0.0
    last_updated: Optional[datetime] = None


__all__ = [
    "BatchItemResult",
    "BatchVerificationResult",
    "FailureCode",
    "PresentationRequest",
    "RevocationStatus",
    "VerificationFailure",
    "VerificationOutcome",
    "VerificationStatistics",
    "VerifierResult",
]
