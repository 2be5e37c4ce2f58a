"""
Built-in endpoint policies and the human-readable descriptions shown to
holders when the service advertises its requirements.
"""

from __future__ import annotations

from typing import Dict, List

from relying_party.models import AttributeConstraint, EndpointPolicy

BASIC_PROFILE = "BasicProfileCredential"
SUBSCRIPTION = "SubscriptionCredential"
FINANCIAL = "FinancialCredential"
IDENTITY = "IdentityCredential"


def default_policies() -> List[EndpointPolicy]:
    return [
        EndpointPolicy(
            endpoint="/profile",
            credential_types=(BASIC_PROFILE,),
            description="Basic profile access",
            constraints=(
                AttributeConstraint(name="isOver18", required=True, expected_value=True),
                AttributeConstraint(
                    name="country",
                    required=True,
                    allowed_values=("US", "CA", "UK", "AU", "DE", "FR", "ES", "IT", "NL", "SE"),
                ),
                AttributeConstraint(
                    name="givenName",
                    required=False,
                    # Letters and spaces, at most 50 characters.
                    pattern=r"^[A-Za-z\s]{1,50}$",
                ),
            ),
        ),
        EndpointPolicy(
            endpoint="/premium",
            credential_types=(BASIC_PROFILE, SUBSCRIPTION),
            description="Premium content and services",
            constraints=(
                AttributeConstraint(name="isOver18", required=True, expected_value=True),
                AttributeConstraint(
                    name="country",
                    required=True,
                    allowed_values=("US", "CA", "UK", "AU", "DE", "FR"),
                ),
                AttributeConstraint(
                    name="subscriptionStatus",
                    required=True,
                    allowed_values=("premium", "enterprise"),
                ),
                # Compared against the clock at request time by the subscription gate.
                AttributeConstraint(name="subscriptionExpiry", required=False),
            ),
        ),
        EndpointPolicy(
            endpoint="/verify-age",
            credential_types=(BASIC_PROFILE,),
            description="Exact age verification",
            constraints=(
                AttributeConstraint(name="age", required=True, min_value=18, max_value=120),
            ),
        ),
        EndpointPolicy(
            endpoint="/financial",
            credential_types=(BASIC_PROFILE, FINANCIAL),
            description="Financial services",
            constraints=(
                AttributeConstraint(name="isOver21", required=True, expected_value=True),
                AttributeConstraint(
                    name="country", required=True, allowed_values=("US", "CA", "UK")
                ),
                AttributeConstraint(
                    name="creditScore", required=True, min_value=600, max_value=850
                ),
                AttributeConstraint(name="income", required=False, min_value=30000),
            ),
        ),
    ]


ATTRIBUTE_DESCRIPTIONS: Dict[str, str] = {
    "isOver18": "Age verification for content access (18+)",
    "isOver21": "Age verification for financial services (21+)",
    "age": "Exact age for precise verification",
    "country": "Country of residence for regional compliance",
    "givenName": "First/given name for personalization (optional)",
    "subscriptionStatus": "Premium subscription level verification",
    "subscriptionExpiry": "Subscription expiration timestamp",
    "creditScore": "Credit score for financial services",
    "income": "Annual income for financial qualification (optional)",
    "phoneNumber": "Verified phone number (optional)",
    "emailAddress": "Verified email address (optional)",
}

CREDENTIAL_TYPE_DESCRIPTIONS: Dict[str, str] = {
    BASIC_PROFILE: "Basic user profile information including age verification and location",
    SUBSCRIPTION: "Premium subscription status and preferences",
    FINANCIAL: "Financial information for qualified services",
    IDENTITY: "Core identity verification credential",
}

UNKNOWN_CREDENTIAL_TYPE_DESCRIPTION = "Custom credential type"


__all__ = [
    "ATTRIBUTE_DESCRIPTIONS",
    "BASIC_PROFILE",
    "CREDENTIAL_TYPE_DESCRIPTIONS",
    "FINANCIAL",
    "IDENTITY",
    "SUBSCRIPTION",
    "UNKNOWN_CREDENTIAL_TYPE_DESCRIPTION",
    "default_policies",
]
