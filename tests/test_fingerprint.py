import pytest

from sitequeue.fingerprint import (
    DeviceAttributes,
    DeviceIdentity,
    IdentityResolver,
    IncompleteDeviceInfo,
    stable_fingerprint,
    strict_fingerprint,
)
from sitequeue.util import sha256_hex

from conftest import device


def test_strict_fingerprint_is_sha256_of_joined_fields():
    info = device(1)
    expected = sha256_hex("|".join([
        info["userAgent"], info["platform"], info["screenResolution"], info["timezone"], info["language"],
    ]))
    assert strict_fingerprint(DeviceAttributes.from_payload(info)) == expected


def test_fingerprints_are_deterministic():
    a = IdentityResolver().resolve(device(3), "10.0.0.3")
    b = IdentityResolver().resolve(device(3), "10.0.0.3")
    assert a == b


def test_stable_fingerprint_ignores_agent_string():
    chrome = DeviceAttributes.from_payload(device(1))
    firefox = DeviceAttributes.from_payload(device(1, userAgent="Mozilla/5.0 (Android 14; Mobile) Firefox/127.0"))
    assert strict_fingerprint(chrome) != strict_fingerprint(firefox)
    assert stable_fingerprint(chrome) == stable_fingerprint(firefox)


def test_stable_fingerprint_tracks_hardware_signals():
    base = DeviceAttributes.from_payload(device(1))
    other_canvas = DeviceAttributes.from_payload(device(1, canvas="data:image/png;base64,zzzz"))
    assert strict_fingerprint(base) == strict_fingerprint(other_canvas)
    assert stable_fingerprint(base) != stable_fingerprint(other_canvas)


def test_flat_and_nested_metadata_agree():
    nested = device(2)
    flat = dict(nested)
    flat.update(flat.pop("metadata"))
    assert (stable_fingerprint(DeviceAttributes.from_payload(nested))
            == stable_fingerprint(DeviceAttributes.from_payload(flat)))


@pytest.mark.parametrize("field", ["userAgent", "platform", "screenResolution", "timezone"])
def test_missing_required_field_is_reported(field):
    info = device(1)
    del info[field]
    with pytest.raises(IncompleteDeviceInfo) as exc:
        IdentityResolver().resolve(info)
    assert exc.value.missing == [field]


def test_language_is_optional():
    info = device(1)
    del info["language"]
    IdentityResolver().resolve(info)


def test_empty_payload_lists_every_required_field():
    with pytest.raises(IncompleteDeviceInfo) as exc:
        IdentityResolver().resolve(None)
    assert exc.value.missing == ["userAgent", "platform", "screenResolution", "timezone"]


class TestDeviceIdentityMatches:

    def test_any_single_signal_matches(self):
        base = DeviceIdentity("s1", "t1", "10.0.0.1")
        assert base.matches(DeviceIdentity("s1", "x", "y"))
        assert base.matches(DeviceIdentity("x", "t1", "y"))
        assert base.matches(DeviceIdentity("x", "y", "10.0.0.1"))

    def test_no_signal_in_common(self):
        assert not DeviceIdentity("s1", "t1", "10.0.0.1").matches(DeviceIdentity("s2", "t2", "10.0.0.2"))

    def test_empty_network_address_never_matches(self):
        assert not DeviceIdentity("s1", "t1", "").matches(DeviceIdentity("s2", "t2", ""))

    def test_matched_signals(self):
        a = DeviceIdentity("s1", "t1", "10.0.0.1")
        assert a.matched_signals(DeviceIdentity("s1", "t2", "10.0.0.1")) == ("strict_fp", "network_address")
