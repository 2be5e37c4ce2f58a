"""
Tiered business rules evaluated over a session's disclosed attributes.

Everything here is a pure function; callers pass the clock where the rule
depends on the current time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from relying_party.errors import validation_error
from relying_party.models import AttributeMap, AttributeValue

MIN_AGE_THRESHOLD = 13
MAX_AGE_THRESHOLD = 100
DEFAULT_AGE_THRESHOLD = 18

PREMIUM_STATUSES = ("premium", "enterprise")


class CreditTier(str, Enum):
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    VERY_GOOD = "very_good"
    EXCELLENT = "excellent"
    EXCEPTIONAL = "exceptional"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Lower bound of each band, ascending; a score belongs to the last band
# whose bound it reaches.
_CREDIT_BANDS = (
    (580, CreditTier.FAIR),
    (670, CreditTier.GOOD),
    (740, CreditTier.VERY_GOOD),
    (800, CreditTier.EXCELLENT),
    (850, CreditTier.EXCEPTIONAL),
)

_INCOME_BANDS = (
    (30000, "Under $30K"),
    (50000, "$30K - $50K"),
    (75000, "$50K - $75K"),
    (100000, "$75K - $100K"),
    (150000, "$100K - $150K"),
)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_number(name: str, value: object) -> float:
    if not _is_number(value):
        raise validation_error(
            f"Attribute '{name}' must be numeric", context={"attribute": name}
        )
    return value  # type: ignore[return-value]


def credit_tier(score: AttributeValue) -> CreditTier:
    value = _require_number("creditScore", score)
    tier = CreditTier.POOR
    for lower_bound, band in _CREDIT_BANDS:
        if value >= lower_bound:
            tier = band
    return tier


def risk_level(score: AttributeValue) -> RiskLevel:
    value = _require_number("creditScore", score)
    if value < 600:
        return RiskLevel.HIGH
    if value < 700:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def income_range(income: AttributeValue) -> str:
    value = _require_number("income", income)
    for upper_bound, label in _INCOME_BANDS:
        if value < upper_bound:
            return label
    return "Over $150K"


def parse_timestamp(value: AttributeValue) -> datetime:
    """
    Interpret an attribute as a point in time: numbers are epoch
    milliseconds, strings are ISO-8601. Naive strings are taken as UTC.
    """
    if _is_number(value):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise validation_error(
                "Timestamp attribute is out of range", context={"value": value}
            ) from exc
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise validation_error(
                "Timestamp attribute is not ISO-8601", context={"value": value}
            ) from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise validation_error("Timestamp attribute has an unsupported type", context={"value": value})


@dataclass(frozen=True)
class SubscriptionAccess:
    status: str
    expires_at: Optional[datetime]
    services: List[str]


def premium_services(status: str) -> List[str]:
    services = ["Enhanced Profile", "Priority Support"]
    if status == "enterprise":
        services.extend(["Enterprise API Access", "Custom Integration", "Dedicated Support"])
    return services


def check_subscription(attributes: AttributeMap, now: datetime) -> SubscriptionAccess:
    """
    Premium gate: the subscription status must be premium or enterprise
    and, when an expiry was disclosed, it must not lie in the past.
    """
    status = attributes.get("subscriptionStatus")
    if status not in PREMIUM_STATUSES:
        raise validation_error(
            "Premium subscription required for this endpoint",
            context={"subscriptionStatus": status, "allowedValues": list(PREMIUM_STATUSES)},
        )
    expires_at = None
    if "subscriptionExpiry" in attributes:
        expires_at = parse_timestamp(attributes["subscriptionExpiry"])
        if expires_at < now:
            raise validation_error(
                "Subscription has expired",
                context={"subscriptionExpiry": expires_at.isoformat()},
            )
    return SubscriptionAccess(
        status=str(status), expires_at=expires_at, services=premium_services(str(status))
    )


@dataclass(frozen=True)
class AgeCheck:
    verified: bool
    required_age: int
    actual_age: Optional[float]
    method: str

    @property
    def has_exact_age(self) -> bool:
        return self.actual_age is not None


def parse_age_threshold(raw: Optional[str]) -> int:
    if raw is None or raw == "":
        return DEFAULT_AGE_THRESHOLD
    try:
        threshold = int(raw)
    except ValueError:
        threshold = None
    if threshold is None or not MIN_AGE_THRESHOLD <= threshold <= MAX_AGE_THRESHOLD:
        raise validation_error(
            f"Invalid age threshold. Must be between {MIN_AGE_THRESHOLD} and {MAX_AGE_THRESHOLD}",
            context={"requiredAge": raw},
        )
    return threshold


def verify_age(attributes: AttributeMap, required_age: int = DEFAULT_AGE_THRESHOLD) -> AgeCheck:
    """
    Decide whether the holder meets `required_age`.

    An exact numeric `age` wins. Otherwise the `isOver18` / `isOver21`
    flags answer thresholds up to 18 and 21 respectively. The exact age is
    reported only when it was disclosed.
    """
    age = attributes.get("age")
    if _is_number(age):
        return AgeCheck(
            verified=age >= required_age,
            required_age=required_age,
            actual_age=age,
            method="age",
        )

    over18 = attributes.get("isOver18")
    over21 = attributes.get("isOver21")
    if not isinstance(over18, bool) and not isinstance(over21, bool):
        raise validation_error(
            "No age information disclosed",
            context={"acceptedAttributes": ["age", "isOver18", "isOver21"]},
        )

    if over21 is True and required_age <= 21:
        return AgeCheck(verified=True, required_age=required_age, actual_age=None, method="isOver21")
    if over18 is True and required_age <= 18:
        return AgeCheck(verified=True, required_age=required_age, actual_age=None, method="isOver18")
    method = "isOver21" if isinstance(over21, bool) else "isOver18"
    return AgeCheck(verified=False, required_age=required_age, actual_age=None, method=method)


def verification_level(attributes: AttributeMap) -> str:
    if "creditScore" in attributes and "income" in attributes:
        return "financial"
    if "subscriptionStatus" in attributes:
        return "premium"
    if attributes.get("isOver18") is True or _is_number(attributes.get("age")):
        return "verified"
    return "basic"


def financial_services(attributes: AttributeMap) -> List[str]:
    services = ["Credit Monitoring", "Financial Planning"]
    score = attributes.get("creditScore")
    if _is_number(score) and score >= 700:
        services.extend(["Premium Credit Products", "Investment Services"])
    income = attributes.get("income")
    if _is_number(income) and income >= 75000:
        services.extend(["Private Banking", "Wealth Management"])
    return services


__all__ = [
    "AgeCheck",
    "CreditTier",
    "DEFAULT_AGE_THRESHOLD",
    "RiskLevel",
    "SubscriptionAccess",
    "check_subscription",
    "credit_tier",
    "financial_services",
    "income_range",
    "parse_age_threshold",
    "parse_timestamp",
    "premium_services",
    "risk_level",
    "verification_level",
    "verify_age",
]
