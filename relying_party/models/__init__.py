from .base import CamelModel
from .policy import (
    AttributeConstraint,
    AttributeMap,
    AttributeValue,
    ConstraintKind,
    EndpointPolicy,
    PolicyEvaluation,
)
from .session import Session, SessionMetadata
from .verification import (
    BatchItemResult,
    BatchVerificationResult,
    FailureCode,
    PresentationRequest,
    RevocationStatus,
    VerificationFailure,
    VerificationOutcome,
    VerificationStatistics,
    VerifierResult,
)

__all__ = [
    "AttributeConstraint",
    "AttributeMap",
    "AttributeValue",
    "BatchItemResult",
    "BatchVerificationResult",
    "CamelModel",
    "ConstraintKind",
    "EndpointPolicy",
    "FailureCode",
    "PolicyEvaluation",
    "PresentationRequest",
    "RevocationStatus",
    "Session",
    "SessionMetadata",
    "VerificationFailure",
    "VerificationOutcome",
    "VerificationStatistics",
    "VerifierResult",
]
