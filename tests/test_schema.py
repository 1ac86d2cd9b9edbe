"""
Tests for domain types and resolver payload validation.
"""

import pytest
from addrmigrate.schema import (
    LinkageUpdate,
    ResolvedAddress,
    ValidationStatus,
    validate_resolution_payload,
)


@pytest.fixture
def valid_payload():
    return {
        "formatted": "123 Main St, New York, NY 10001, USA",
        "components": {
            "street": "Main St",
            "number": "123",
            "city": "New York",
            "postal_code": "10001",
            "country_code": "us",
        },
        "location": {"lat": 40.7128, "lng": -74.0060},
        "type": "rooftop",
    }


class TestPayloadValidation:
    """Test validate_resolution_payload."""

    def test_valid_payload(self, valid_payload):
        assert validate_resolution_payload(valid_payload) == []

    def test_not_an_object(self):
        assert validate_resolution_payload(None) == ["Payload must be a JSON object"]
        assert validate_resolution_payload([]) == ["Payload must be a JSON object"]

    def test_missing_formatted(self, valid_payload):
        del valid_payload["formatted"]
        errors = validate_resolution_payload(valid_payload)
        assert any("formatted" in e for e in errors)

    def test_missing_component(self, valid_payload):
        del valid_payload["components"]["postal_code"]
        errors = validate_resolution_payload(valid_payload)
        assert "Component 'postal_code' is required" in errors

    def test_numeric_house_number_allowed(self, valid_payload):
        valid_payload["components"]["number"] = 123
        assert validate_resolution_payload(valid_payload) == []

    def test_bad_country_code(self, valid_payload):
        valid_payload["components"]["country_code"] = "USA"
        errors = validate_resolution_payload(valid_payload)
        assert any("country_code" in e for e in errors)

    def test_legacy_country_key(self, valid_payload):
        valid_payload["components"]["country"] = valid_payload["components"].pop("country_code")
        assert validate_resolution_payload(valid_payload) == []

    def test_out_of_range_coordinates(self, valid_payload):
        valid_payload["location"] = {"lat": 123.0, "lng": -200.0}
        errors = validate_resolution_payload(valid_payload)
        assert len(errors) == 2

    def test_boolean_is_not_a_coordinate(self, valid_payload):
        valid_payload["location"]["lat"] = True
        assert validate_resolution_payload(valid_payload)

    def test_type_must_be_string(self, valid_payload):
        valid_payload["type"] = 5
        assert "Field 'type' must be a string if provided" in validate_resolution_payload(valid_payload)


class TestResolvedAddress:
    """Test ResolvedAddress construction and snapshots."""

    def test_from_payload(self, valid_payload):
        resolved = ResolvedAddress.from_payload(valid_payload)

        assert resolved.components.country_code == "US"
        assert resolved.components.number == "123"
        assert resolved.location.lng == -74.006
        assert resolved.precision == "ROOFTOP"

    def test_from_payload_trims_country_code(self, valid_payload):
        valid_payload["components"]["country_code"] = " us "
        assert ResolvedAddress.from_payload(valid_payload).components.country_code == "US"

    def test_from_payload_missing_type(self, valid_payload):
        del valid_payload["type"]
        assert ResolvedAddress.from_payload(valid_payload).precision == "UNKNOWN"

    def test_snapshot_structure(self, valid_payload):
        snapshot = ResolvedAddress.from_payload(valid_payload).to_snapshot()

        assert set(snapshot) == {"formatted", "components", "location", "type"}
        assert snapshot["components"]["postal_code"] == "10001"
        assert snapshot["location"] == {"lat": 40.7128, "lng": -74.006}

    def test_linkage_defaults_to_verified(self):
        linkage = LinkageUpdate(record_id="o1", address_id="a1", country_code="US", snapshot={})
        assert linkage.status is ValidationStatus.VERIFIED
        assert ValidationStatus.FAILED.value == "failed"
