from __future__ import annotations

import re
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from pydantic import ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, model_validator

from .base import CamelModel

# Closed set of scalar kinds a disclosed attribute may take.
AttributeValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]
AttributeMap = Dict[str, AttributeValue]
NumericBound = Union[StrictInt, StrictFloat]


class ConstraintKind(str, Enum):
    EXACT = "exact"
    ALLOWED = "allowed"
    RANGE = "range"
    PATTERN = "pattern"
    PRESENCE = "presence"


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_equal(left: object, right: object) -> bool:
    """
    Strict equality over attribute values: booleans only equal booleans,
    numbers compare by value regardless of int/float, strings by content.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def _stringify(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class AttributeConstraint(CamelModel):
    """
    Declarative rule for one attribute on one endpoint.

    At most one of `expected_value`, `allowed_values`, the
    `min_value`/`max_value` range and `pattern` may be set. A constraint
    with none of them only asks for the attribute to be present.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Attribute name")
    required: bool = Field(default=True, description="Whether the attribute must be disclosed")
    expected_value: Optional[AttributeValue] = None
    allowed_values: Optional[Tuple[AttributeValue, ...]] = None
    min_value: Optional[NumericBound] = None
    max_value: Optional[NumericBound] = None
    pattern: Optional[str] = None
    description: Optional[str] = None

    @model_validator(mode="after")
    def _check_single_kind(self) -> "AttributeConstraint":
        kinds = [
            self.expected_value is not None,
            self.allowed_values is not None,
            self.min_value is not None or self.max_value is not None,
            self.pattern is not None,
        ]
        if sum(kinds) > 1:
            raise ValueError(
                f"constraint '{self.name}' declares more than one constraint kind"
            )
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            raise ValueError(f"constraint '{self.name}' has minValue > maxValue")
        if self.allowed_values is not None and not self.allowed_values:
            raise ValueError(f"constraint '{self.name}' has an empty allowedValues list")
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as exc:
                raise ValueError(
                    f"constraint '{self.name}' has an invalid pattern: {exc}"
                ) from exc
        return self

    @property
    def kind(self) -> ConstraintKind:
        if self.expected_value is not None:
            return ConstraintKind.EXACT
        if self.allowed_values is not None:
            return ConstraintKind.ALLOWED
        if self.min_value is not None or self.max_value is not None:
            return ConstraintKind.RANGE
        if self.pattern is not None:
            return ConstraintKind.PATTERN
        return ConstraintKind.PRESENCE

    def accepts(self, value: AttributeValue) -> bool:
        """Return True when a present value satisfies this constraint."""
        kind = self.kind
        if kind is ConstraintKind.EXACT:
            return values_equal(value, self.expected_value)
        if kind is ConstraintKind.ALLOWED:
            return any(values_equal(value, allowed) for allowed in self.allowed_values or ())
        if kind is ConstraintKind.RANGE:
            if not _is_number(value):
                return False
            if self.min_value is not None and value < self.min_value:
                return False
            if self.max_value is not None and value > self.max_value:
                return False
            return True
        if kind is ConstraintKind.PATTERN:
            return re.fullmatch(self.pattern or "", _stringify(value)) is not None
        return True


class EndpointPolicy(CamelModel):
    """
    Credential types and attribute constraints one endpoint requires.
    """

    model_config = ConfigDict(frozen=True)

    endpoint: str = Field(..., description="Endpoint path, e.g. '/profile'")
    credential_types: Tuple[str, ...] = Field(default_factory=tuple)
    constraints: Tuple[AttributeConstraint, ...] = Field(default_factory=tuple)
    description: Optional[str] = None

    @model_validator(mode="after")
    def _check_unique_names(self) -> "EndpointPolicy":
        seen = set()
        for constraint in self.constraints:
            if constraint.name in seen:
                raise ValueError(
                    f"endpoint '{self.endpoint}' declares attribute '{constraint.name}' twice"
                )
            seen.add(constraint.name)
        if len(set(self.credential_types)) != len(self.credential_types):
            raise ValueError(f"endpoint '{self.endpoint}' repeats a credential type")
        return self

    @property
    def required_attributes(self) -> List[str]:
        return [c.name for c in self.constraints if c.required]

    @property
    def optional_attributes(self) -> List[str]:
        return [c.name for c in self.constraints if not c.required]


class PolicyEvaluation(CamelModel):
    endpoint: str
    satisfied: bool
    missing: List[str] = Field(default_factory=list)
    violated: List[str] = Field(default_factory=list)


__all__ = [
    "AttributeConstraint",
    "AttributeMap",
    "AttributeValue",
    "ConstraintKind",
    "EndpointPolicy",
    "PolicyEvaluation",
    "values_equal",
]
