import pytest

from mtr_provisioner.errors import InvalidUpnError
from mtr_provisioner.models import MatchedDomain, MembershipAction
from mtr_provisioner.rules import (
    MAC_CANONICAL_LENGTH,
    is_complete_mac,
    is_member,
    lookup_order,
    normalize_mac,
    resolve_action,
    split_upn,
    tenant_default_domain,
    validate_serial,
)


class TestValidateSerial:
    def test_valid_serial(self):
        result = validate_serial("ABCDEFGHIJK2")
        assert result.is_valid
        assert result.message == "Valid Logitech device serial number"

    @pytest.mark.parametrize(
        "serial, message",
        [
            ("", "Serial number too short: 0/12 characters"),
            ("ABC2", "Serial number too short: 4/12 characters"),
            ("ABCDEFGHIJKL2", "Serial number too long: 13/12 characters"),
            ("ABCDEFGHIJKL", 'Serial number must end with "2"'),
        ],
    )
    def test_invalid_serials(self, serial, message):
        result = validate_serial(serial)
        assert not result.is_valid
        assert result.message == message

    def test_length_is_checked_before_suffix(self):
        assert "too short" in validate_serial("ABCDEFGHIJK").message

    def test_whitespace_counts_towards_length(self):
        result = validate_serial(" ABCDEFGHIJK2")
        assert result.message == "Serial number too long: 13/12 characters"


MAC_SAMPLES = [
    "01-23-45-67-89-ab",
    "aab",
    "a",
    "aabbccddeeff0011223344",
    "::--..  ",
    "zz@1!2#3$4%5^6&7*8(9)0ab",
    "aa:bb:cc:dd:ee:f",
    "AA BB CC DD EE FF",
]


class TestNormalizeMac:
    @pytest.mark.parametrize(
        "raw",
        ["aa-bb-cc-dd-ee-ff", "AABB.CCDD.EEFF", "aabbccddeeff", "AA:BB:CC:DD:EE:FF"],
    )
    def test_notations_converge(self, raw):
        assert normalize_mac(raw) == "AA:BB:CC:DD:EE:FF"

    def test_partial_input_keeps_trailing_digit(self):
        assert normalize_mac("aab") == "AA:B"
        assert not is_complete_mac("AA:B")

    def test_extra_digits_are_truncated(self):
        assert normalize_mac("aabbccddeeff0011") == "AA:BB:CC:DD:EE:FF"

    def test_non_hex_characters_are_dropped(self):
        assert normalize_mac("zz-12-gh") == "12"

    @pytest.mark.parametrize("raw", MAC_SAMPLES)
    def test_idempotent(self, raw):
        once = normalize_mac(raw)
        assert normalize_mac(once) == once

    @pytest.mark.parametrize("raw", MAC_SAMPLES)
    def test_never_longer_than_canonical(self, raw):
        assert len(normalize_mac(raw)) <= MAC_CANONICAL_LENGTH

    def test_empty(self):
        assert normalize_mac("") == ""
        assert not is_complete_mac("")

    def test_complete(self):
        assert is_complete_mac("01:23:45:67:89:AB")
        assert not is_complete_mac("01:23:45:67:89:ab")


class TestUpn:
    def test_split(self):
        parts = split_upn("room1@banenor.no")
        assert parts.local == "room1"
        assert parts.domain == "banenor.no"
        assert parts.upn == "room1@banenor.no"

    @pytest.mark.parametrize("upn", ["", "room1", "@banenor.no", "room1@", "a@b@c"])
    def test_invalid(self, upn):
        with pytest.raises(InvalidUpnError, match="Invalid UPN format"):
            split_upn(upn)

    def test_invalid_upn_is_a_value_error(self):
        with pytest.raises(ValueError):
            split_upn("nope")

    @pytest.mark.parametrize(
        "domain, expected",
        [
            ("banenor.no", "banenor.onmicrosoft.com"),
            ("mail.contoso.com", "mail.onmicrosoft.com"),
            ("contoso", "contoso.onmicrosoft.com"),
        ],
    )
    def test_tenant_default_domain(self, domain, expected):
        assert tenant_default_domain(domain) == expected

    def test_lookup_order_tries_original_first(self):
        assert lookup_order("room1@banenor.no") == [
            (MatchedDomain.ORIGINAL, "room1@banenor.no"),
            (MatchedDomain.TENANT_DEFAULT, "room1@banenor.onmicrosoft.com"),
        ]


class TestMembership:
    def test_is_member(self):
        assert is_member({"a", "b"}, "a")
        assert not is_member(set(), "a")

    @pytest.mark.parametrize(
        "member, action, perform, reason",
        [
            (False, MembershipAction.ADD, True, None),
            (True, MembershipAction.ADD, False, "already a member"),
            (True, MembershipAction.REMOVE, True, None),
            (False, MembershipAction.REMOVE, False, "not a member"),
        ],
    )
    def test_resolve_action(self, member, action, perform, reason):
        decision = resolve_action(member, action)
        assert decision.perform is perform
        assert decision.reason == reason
