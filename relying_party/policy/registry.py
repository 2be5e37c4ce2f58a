"""
Attribute policy registry.

Maps endpoint identifiers to the credential types and attribute constraints
they require. The registry is read-only once built; `evaluate` is a pure
function of its inputs.
"""

from __future__ import annotations

import json
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from relying_party.errors import configuration_error
from relying_party.logging_config import logger
from relying_party.models import AttributeMap, EndpointPolicy, PolicyEvaluation

from .defaults import (
    ATTRIBUTE_DESCRIPTIONS,
    CREDENTIAL_TYPE_DESCRIPTIONS,
    UNKNOWN_CREDENTIAL_TYPE_DESCRIPTION,
    default_policies,
)


class PolicyRegistry:
    def __init__(
        self,
        policies: Iterable[EndpointPolicy],
        *,
        attribute_descriptions: Optional[Mapping[str, str]] = None,
        credential_type_descriptions: Optional[Mapping[str, str]] = None,
    ) -> None:
        by_endpoint: Dict[str, EndpointPolicy] = {}
        for policy in policies:
            if policy.endpoint in by_endpoint:
                raise configuration_error(
                    f"Duplicate policy for endpoint '{policy.endpoint}'",
                    context={"endpoint": policy.endpoint},
                )
            by_endpoint[policy.endpoint] = policy
        self._policies: Mapping[str, EndpointPolicy] = MappingProxyType(by_endpoint)
        self._attribute_descriptions: Mapping[str, str] = MappingProxyType(
            dict(attribute_descriptions or {})
        )
        self._credential_type_descriptions: Mapping[str, str] = MappingProxyType(
            dict(credential_type_descriptions or {})
        )

    @classmethod
    def default(cls) -> "PolicyRegistry":
        return cls(
            default_policies(),
            attribute_descriptions=ATTRIBUTE_DESCRIPTIONS,
            credential_type_descriptions=CREDENTIAL_TYPE_DESCRIPTIONS,
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PolicyRegistry":
        """
        Build a registry from a JSON-style document:

        {
            "endpoints": {"/profile": {"credentialTypes": [...], "constraints": [...]}},
            "attributeDescriptions": {...},
            "credentialTypeDescriptions": {...}
        }

        Descriptions missing from the document fall back to the built-in ones.
        """
        endpoints = data.get("endpoints")
        if not isinstance(endpoints, Mapping) or not endpoints:
            raise configuration_error("Policy document must contain a non-empty 'endpoints' object")

        policies: List[EndpointPolicy] = []
        for endpoint, body in endpoints.items():
            if not isinstance(body, Mapping):
                raise configuration_error(
                    f"Policy for endpoint '{endpoint}' must be an object",
                    context={"endpoint": endpoint},
                )
            try:
                policies.append(EndpointPolicy.model_validate({**body, "endpoint": endpoint}))
            except ValidationError as exc:
                raise configuration_error(
                    f"Invalid policy for endpoint '{endpoint}'",
                    context={"endpoint": endpoint, "errors": exc.errors(include_url=False)},
                ) from exc

        attribute_descriptions = dict(ATTRIBUTE_DESCRIPTIONS)
        attribute_descriptions.update(data.get("attributeDescriptions") or {})
        credential_type_descriptions = dict(CREDENTIAL_TYPE_DESCRIPTIONS)
        credential_type_descriptions.update(data.get("credentialTypeDescriptions") or {})
        return cls(
            policies,
            attribute_descriptions=attribute_descriptions,
            credential_type_descriptions=credential_type_descriptions,
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "PolicyRegistry":
        file_path = Path(path)
        try:
            data = json.loads(file_path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise configuration_error(
                f"Cannot read policy file {file_path}", context={"path": str(file_path)}
            ) from exc
        except json.JSONDecodeError as exc:
            raise configuration_error(
                f"Policy file {file_path} is not valid JSON",
                context={"path": str(file_path), "line": exc.lineno},
            ) from exc
        if not isinstance(data, Mapping):
            raise configuration_error(
                f"Policy file {file_path} must contain a JSON object",
                context={"path": str(file_path)},
            )
        registry = cls.from_mapping(data)
        logger.info(
            "Loaded %d endpoint policies from %s", len(registry.endpoints()), file_path
        )
        return registry

    def endpoints(self) -> List[str]:
        return list(self._policies)

    def has(self, endpoint: str) -> bool:
        return endpoint in self._policies

    def get(self, endpoint: str) -> EndpointPolicy:
        policy = self._policies.get(endpoint)
        if policy is None:
            raise configuration_error(
                f"No policy configured for endpoint '{endpoint}'",
                context={"endpoint": endpoint, "availableEndpoints": self.endpoints()},
            )
        return policy

    def evaluate(self, endpoint: str, attributes: AttributeMap) -> PolicyEvaluation:
        """
        Check `attributes` against the policy of `endpoint`.

        Required attributes that are absent are reported in `missing`;
        present attributes failing their constraint in `violated`.
        Optional constraints apply only when the attribute is present.
        """
        policy = self.get(endpoint)
        missing: List[str] = []
        violated: List[str] = []
        for constraint in policy.constraints:
            if constraint.name not in attributes:
                if constraint.required:
                    missing.append(constraint.name)
                continue
            if not constraint.accepts(attributes[constraint.name]):
                violated.append(constraint.name)
        return PolicyEvaluation(
            endpoint=endpoint,
            satisfied=not missing and not violated,
            missing=missing,
            violated=violated,
        )

    def credential_types(self) -> List[str]:
        seen: Dict[str, None] = {}
        for policy in self._policies.values():
            for credential_type in policy.credential_types:
                seen.setdefault(credential_type, None)
        return list(seen)

    def endpoints_for_credential_type(self, credential_type: str) -> List[str]:
        return [
            endpoint
            for endpoint, policy in self._policies.items()
            if credential_type in policy.credential_types
        ]

    def describe_credential_type(self, credential_type: str) -> str:
        return self._credential_type_descriptions.get(
            credential_type, UNKNOWN_CREDENTIAL_TYPE_DESCRIPTION
        )

    @property
    def attribute_descriptions(self) -> Mapping[str, str]:
        return self._attribute_descriptions

    def __len__(self) -> int:
        return len(self._policies)


def build_registry(policy_file: Optional[str]) -> PolicyRegistry:
    if policy_file:
        return PolicyRegistry.from_file(policy_file)
    return PolicyRegistry.default()


__all__ = ["PolicyRegistry", "build_registry"]
