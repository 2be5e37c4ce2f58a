from .gateway import VerificationGateway
from .http_verifier import HttpPresentationVerifier
from .verifier import PresentationVerifier, VerifierError

__all__ = [
    "HttpPresentationVerifier",
    "PresentationVerifier",
    "VerificationGateway",
    "VerifierError",
]
