"""
Canonical keys and content hashes for resolved addresses.

The hash covers country, postal code, street and number, in that order.
City, formatted text and coordinates are deliberately left out: two
resolutions of the same door must land on the same key even when the
provider formats them differently.
"""

import hashlib

from .schema import AddressComponents

KEY_SEPARATOR = "|"


def normalize_text(s: str) -> str:
    return " ".join(str(s).strip().upper().split())


def normalize_component(s: str) -> str:
    # The separator never survives inside a component, keeping keys unambiguous
    return normalize_text(str(s).replace(KEY_SEPARATOR, " "))


def canonical_key(components: AddressComponents) -> str:
    """Pre-image of the content hash, e.g. 'US|10001|MAIN ST|123'."""
    parts = [
        components.country_code,
        components.postal_code,
        components.street,
        components.number,
    ]
    return KEY_SEPARATOR.join(normalize_component(p) for p in parts)


def content_hash(components: AddressComponents) -> str:
    """Fixed-width sha256 hex digest of canonical_key. Opaque; compare only."""
    return hashlib.sha256(canonical_key(components).encode("utf-8")).hexdigest()


def address_validation_status(precision: str) -> str:
    """Catalog validation status for a resolver precision tag."""
    tag = normalize_text(precision).lower().replace(" ", "_")
    return f"verified_{tag or 'unknown'}"
