"""
Device identity resolution.

Two one-way fingerprints are derived from client-reported device attributes:

- strict: agent string, platform, screen, timezone, locale. One browser on one device.
- stable: the same minus the agent string, plus hardware/display signals.
  Survives switching browsers on the same physical device.

Together with the best-effort network address they form a DeviceIdentity.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .util import sha256_hex

REQUIRED_FIELDS = ("userAgent", "platform", "screenResolution", "timezone")

STRICT_FIELDS = ("userAgent", "platform", "screenResolution", "timezone", "language")

STABLE_FIELDS = (
    "platform",
    "screenResolution",
    "timezone",
    "language",
    "colorDepth",
    "hardwareConcurrency",
    "deviceMemory",
    "maxTouchPoints",
    "canvas",
)

# Clients may nest hardware signals under "metadata"
_METADATA_KEY = "metadata"


class IncompleteDeviceInfo(ValueError):
    """Raised when required device attributes are missing."""
    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"missing device attributes: {', '.join(missing)}")


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class DeviceAttributes:
    """Flattened device attribute bag."""
    values: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Optional[Mapping[str, Any]]) -> "DeviceAttributes":
        flat: Dict[str, str] = {}
        if not isinstance(payload, Mapping) or not payload:
            return cls(flat)
        nested = payload.get(_METADATA_KEY)
        if isinstance(nested, Mapping):
            for k, v in nested.items():
                flat[k] = _text(v)
        for k, v in payload.items():
            if k == _METADATA_KEY:
                continue
            flat[k] = _text(v)
        return cls(flat)

    def get(self, name: str) -> str:
        return self.values.get(name, "")

    def missing(self) -> List[str]:
        return [f for f in REQUIRED_FIELDS if not self.get(f).strip()]


@dataclass(frozen=True)
class DeviceIdentity:
    """
    Three independently computed device signals.

    Two identities are the same device when ANY signal matches.
    An empty network address never matches.
    """
    strict_fp: str
    stable_fp: str
    network_address: str = ""

    def matches(self, other: "DeviceIdentity") -> bool:
        if self.strict_fp and self.strict_fp == other.strict_fp:
            return True
        if self.stable_fp and self.stable_fp == other.stable_fp:
            return True
        if self.network_address and self.network_address == other.network_address:
            return True
        return False

    def matched_signals(self, other: "DeviceIdentity") -> Tuple[str, ...]:
        out = []
        if self.strict_fp and self.strict_fp == other.strict_fp:
            out.append("strict_fp")
        if self.stable_fp and self.stable_fp == other.stable_fp:
            out.append("stable_fp")
        if self.network_address and self.network_address == other.network_address:
            out.append("network_address")
        return tuple(out)


def _digest(attrs: DeviceAttributes, fields) -> str:
    return sha256_hex("|".join(attrs.get(f) for f in fields))


def strict_fingerprint(attrs: DeviceAttributes) -> str:
    return _digest(attrs, STRICT_FIELDS)


def stable_fingerprint(attrs: DeviceAttributes) -> str:
    return _digest(attrs, STABLE_FIELDS)


class IdentityResolver:
    """Builds a DeviceIdentity from raw attributes plus a network hint."""

    def resolve(self, payload: Optional[Mapping[str, Any]], network_address: Optional[str] = None) -> DeviceIdentity:
        """
        Raises:
            IncompleteDeviceInfo: if any required attribute is absent
        """
        attrs = payload if isinstance(payload, DeviceAttributes) else DeviceAttributes.from_payload(payload)
        missing = attrs.missing()
        if missing:
            raise IncompleteDeviceInfo(missing)
        return DeviceIdentity(
            strict_fp=strict_fingerprint(attrs),
            stable_fp=stable_fingerprint(attrs),
            network_address=(network_address or "").strip(),
        )
