"""Tests for credential derivation and fingerprint utilities."""

import re

import pytest
from qwbp.credentials import (
    base64url_decode,
    base64url_encode,
    compare_fingerprints,
    derive_credentials,
    extract_fingerprint_from_sdp,
    format_fingerprint,
    generate_sas,
    generate_session_id,
)
from .test_vectors import (
    BROWSER_OFFER_SDP,
    FINGERPRINT_HIGH,
    FINGERPRINT_LOW,
    TEST_FINGERPRINT,
    TEST_PEER_FINGERPRINT,
)

BASE64URL_CHARS = re.compile(r"^[A-Za-z0-9_-]+$")


class TestDeriveCredentials:
    """Test HKDF-based ICE credential derivation."""

    def test_lengths(self) -> None:
        """ufrag is 6 characters and pwd is 24."""
        creds = derive_credentials(TEST_FINGERPRINT)

        assert len(creds.ufrag) == 6
        assert len(creds.pwd) == 24

    def test_url_safe_charset(self) -> None:
        """Both values are unpadded base64url."""
        creds = derive_credentials(TEST_FINGERPRINT)

        assert BASE64URL_CHARS.match(creds.ufrag)
        assert BASE64URL_CHARS.match(creds.pwd)
        assert "=" not in creds.ufrag + creds.pwd

    def test_deterministic(self) -> None:
        """The same fingerprint always yields the same credentials."""
        assert derive_credentials(TEST_FINGERPRINT) == derive_credentials(bytes(TEST_FINGERPRINT))

    def test_distinct_fingerprints(self) -> None:
        """Different fingerprints yield different credentials."""
        a = derive_credentials(TEST_FINGERPRINT)
        b = derive_credentials(TEST_PEER_FINGERPRINT)

        assert a.ufrag != b.ufrag
        assert a.pwd != b.pwd

    def test_ufrag_and_pwd_independent(self) -> None:
        """ufrag is not a prefix of pwd (different HKDF info strings)."""
        creds = derive_credentials(TEST_FINGERPRINT)

        assert not creds.pwd.startswith(creds.ufrag)

    @pytest.mark.parametrize("length", [0, 20, 31, 33, 64])
    def test_rejects_bad_length(self, length) -> None:
        with pytest.raises(ValueError, match="32 bytes"):
            derive_credentials(bytes(length))


class TestCompareFingerprints:
    """Test role-deciding fingerprint comparison."""

    def test_byte_seven_decides(self) -> None:
        assert compare_fingerprints(FINGERPRINT_HIGH, FINGERPRINT_LOW) == 1
        assert compare_fingerprints(FINGERPRINT_LOW, FINGERPRINT_HIGH) == -1

    def test_equal(self) -> None:
        assert compare_fingerprints(TEST_FINGERPRINT, bytes(TEST_FINGERPRINT)) == 0

    def test_first_difference_wins(self) -> None:
        """Later bytes do not matter once one differs."""
        a = bytes([0x01] + [0x00] * 31)
        b = bytes([0x00] + [0xFF] * 31)

        assert compare_fingerprints(a, b) == 1

    def test_antisymmetric(self) -> None:
        assert compare_fingerprints(TEST_FINGERPRINT, TEST_PEER_FINGERPRINT) == -compare_fingerprints(
            TEST_PEER_FINGERPRINT, TEST_FINGERPRINT
        )


class TestFingerprintFormatting:
    """Test SDP fingerprint formatting and extraction."""

    def test_format(self) -> None:
        formatted = format_fingerprint(TEST_FINGERPRINT)

        assert formatted.startswith("E7:3B:38:46:1A:5D")
        assert formatted.endswith("4F:7A:1C:3D")
        assert len(formatted) == 32 * 3 - 1

    def test_extract_from_sdp(self) -> None:
        assert extract_fingerprint_from_sdp(BROWSER_OFFER_SDP) == TEST_FINGERPRINT

    def test_extract_lowercase(self) -> None:
        sdp = f"a=fingerprint:sha-256 {format_fingerprint(TEST_PEER_FINGERPRINT).lower()}\r\n"

        assert extract_fingerprint_from_sdp(sdp) == TEST_PEER_FINGERPRINT

    def test_extract_missing(self) -> None:
        with pytest.raises(ValueError, match="No SHA-256 fingerprint"):
            extract_fingerprint_from_sdp("v=0\r\na=fingerprint:sha-1 AA:BB\r\n")

    def test_extract_wrong_length(self) -> None:
        with pytest.raises(ValueError, match="Invalid fingerprint length"):
            extract_fingerprint_from_sdp("a=fingerprint:sha-256 AA:BB:CC\r\n")


class TestSessionId:
    """Test SDP session id derivation."""

    def test_decimal_64_bit(self) -> None:
        session_id = generate_session_id(TEST_FINGERPRINT)

        assert session_id.isdigit()
        assert 0 <= int(session_id) < 2**64

    def test_deterministic(self) -> None:
        assert generate_session_id(TEST_FINGERPRINT) == generate_session_id(TEST_FINGERPRINT)
        assert generate_session_id(TEST_FINGERPRINT) != generate_session_id(TEST_PEER_FINGERPRINT)


class TestShortAuthString:
    """Test the 4-digit verification code."""

    def test_four_digits(self) -> None:
        sas = generate_sas(TEST_FINGERPRINT, TEST_PEER_FINGERPRINT)

        assert len(sas) == 4
        assert sas.isdigit()

    def test_symmetric(self) -> None:
        """Both peers compute the same code."""
        assert generate_sas(TEST_FINGERPRINT, TEST_PEER_FINGERPRINT) == generate_sas(
            TEST_PEER_FINGERPRINT, TEST_FINGERPRINT
        )
        assert generate_sas(FINGERPRINT_LOW, FINGERPRINT_HIGH) == generate_sas(
            FINGERPRINT_HIGH, FINGERPRINT_LOW
        )


class TestBase64Url:
    """Test base64url helpers."""

    def test_url_safe_alphabet(self) -> None:
        assert base64url_encode(b"\xfb\xff") == "-_8"

    def test_no_padding(self) -> None:
        assert base64url_encode(b"a") == "YQ"

    def test_decode_restores_padding(self) -> None:
        assert base64url_decode("-_8") == b"\xfb\xff"
        assert base64url_decode("YQ") == b"a"
        assert base64url_decode("YWJj") == b"abc"
