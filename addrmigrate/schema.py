"""
Domain types passed between the resolver, the store and the orchestrator.

Also holds the payload validator used by the HTTP resolver: minimal,
dependency-free checks that return a list of error messages.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

COMPONENT_FIELDS = ["street", "number", "city", "postal_code", "country_code"]


class ValidationStatus(str, Enum):
    """Delivery validation status written back onto an order."""

    VERIFIED = "verified"
    FAILED = "failed"


@dataclass(frozen=True)
class LegacyRecord:
    """An order awaiting normalization (read-only input)."""

    id: str
    tenant_id: str
    raw_address: str


@dataclass(frozen=True)
class AddressComponents:
    street: str
    number: str
    city: str
    postal_code: str
    country_code: str

    def to_dict(self) -> Dict[str, str]:
        return {f: getattr(self, f) for f in COMPONENT_FIELDS}


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float


@dataclass(frozen=True)
class ResolvedAddress:
    """Structured output of the resolution service for one raw address."""

    formatted: str
    components: AddressComponents
    location: Coordinate
    precision: str

    def to_snapshot(self) -> Dict[str, Any]:
        """Immutable audit snapshot stored on the order."""
        return {
            "formatted": self.formatted,
            "components": self.components.to_dict(),
            "location": {"lat": self.location.lat, "lng": self.location.lng},
            "type": self.precision,
        }

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ResolvedAddress":
        """Build from a payload that already passed validate_resolution_payload."""
        components = data["components"]
        # Providers disagree on the key; "country" is what the legacy mock emitted
        country = components.get("country_code") or components.get("country")
        return cls(
            formatted=data["formatted"].strip(),
            components=AddressComponents(
                street=str(components["street"]),
                number=str(components["number"]),
                city=str(components.get("city") or ""),
                postal_code=str(components["postal_code"]),
                country_code=str(country).strip().upper(),
            ),
            location=Coordinate(
                lat=float(data["location"]["lat"]),
                lng=float(data["location"]["lng"]),
            ),
            precision=str(data.get("type") or "UNKNOWN").upper(),
        )


@dataclass(frozen=True)
class CanonicalAddress:
    """Deduplicated address, unique per (tenant, country, hash)."""

    id: str
    tenant_id: str
    hash: str
    country_code: str
    components: Dict[str, str]
    formatted: str
    location: Coordinate
    validation_status: str
    last_validated_at: datetime

    @property
    def dedup_key(self):
        return (self.tenant_id, self.country_code, self.hash)


@dataclass(frozen=True)
class LinkageUpdate:
    """Mutation applied to an order once its address is resolved."""

    record_id: str
    address_id: str
    country_code: str
    snapshot: Dict[str, Any] = field(hash=False)
    status: ValidationStatus = ValidationStatus.VERIFIED


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def validate_resolution_payload(data: Optional[Dict[str, Any]]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    if not isinstance(data, dict):
        return ["Payload must be a JSON object"]

    errors: List[str] = []

    if not _is_non_empty_str(data.get("formatted")):
        errors.append("Field 'formatted' must be a non-empty string")

    components = data.get("components")
    if not isinstance(components, dict):
        errors.append("Field 'components' must be an object")
    else:
        for f in ["street", "number", "postal_code"]:
            value = components.get(f)
            if not (_is_non_empty_str(value) or _is_number(value)):
                errors.append(f"Component '{f}' is required")
        country = components.get("country_code") or components.get("country")
        if not (_is_non_empty_str(country) and len(country.strip()) == 2):
            errors.append("Component 'country_code' must be a 2-letter code")

    location = data.get("location")
    if not isinstance(location, dict):
        errors.append("Field 'location' must be an object")
    else:
        lat, lng = location.get("lat"), location.get("lng")
        if not (_is_number(lat) and -90 <= lat <= 90):
            errors.append("Field 'location.lat' must be a latitude")
        if not (_is_number(lng) and -180 <= lng <= 180):
            errors.append("Field 'location.lng' must be a longitude")

    if "type" in data and data["type"] is not None and not isinstance(data["type"], str):
        errors.append("Field 'type' must be a string if provided")

    return errors
