"""
ICE credential derivation and fingerprint utilities for QWBP.

Both peers derive each other's ICE credentials from the scanned DTLS
fingerprint, so no username fragment or password is ever transmitted.
"""

import base64
import hashlib
import re

from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.hashes import SHA256

from .models import IceCredentials
from .types import (
    FINGERPRINT_SIZE,
    HKDF_INFO_UFRAG,
    HKDF_INFO_PWD,
    HKDF_UFRAG_LENGTH,
    HKDF_PWD_LENGTH,
    SAS_MODULUS,
)


_FINGERPRINT_LINE = re.compile(r"a=fingerprint:sha-256\s+([A-Fa-f0-9:]+)", re.IGNORECASE)


def _hkdf_expand(ikm: bytes, info: bytes, length: int) -> bytes:
    hkdf = HKDF(
        algorithm=SHA256(),
        length=length,
        salt=None,
        info=info,
    )
    return hkdf.derive(ikm)


def base64url_encode(data: bytes) -> str:
    """Encode bytes as base64url without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(text: str) -> bytes:
    """Decode a base64url string, restoring any stripped padding."""
    padding = 4 - len(text) % 4
    if padding != 4:
        text += "=" * padding
    return base64.urlsafe_b64decode(text)


def derive_credentials(fingerprint: bytes) -> IceCredentials:
    """
    Derive ICE credentials from a DTLS fingerprint using HKDF-SHA256.

    Args:
        fingerprint: 32-byte DTLS fingerprint

    Returns:
        IceCredentials with a 6-character ufrag and 24-character pwd

    Raises:
        ValueError: If the fingerprint is not 32 bytes
    """
    if len(fingerprint) != FINGERPRINT_SIZE:
        raise ValueError(
            f"Fingerprint must be {FINGERPRINT_SIZE} bytes, got {len(fingerprint)}"
        )

    ufrag_bytes = _hkdf_expand(fingerprint, HKDF_INFO_UFRAG, HKDF_UFRAG_LENGTH)
    pwd_bytes = _hkdf_expand(fingerprint, HKDF_INFO_PWD, HKDF_PWD_LENGTH)

    return IceCredentials(
        ufrag=base64url_encode(ufrag_bytes),
        pwd=base64url_encode(pwd_bytes),
    )


def compare_fingerprints(a: bytes, b: bytes) -> int:
    """
    Compare two fingerprints byte by byte.

    The first differing byte decides. Equal fingerprints mean the device
    scanned its own payload.

    Returns:
        1 if a > b, -1 if a < b, 0 if equal
    """
    a, b = bytes(a), bytes(b)
    return (a > b) - (a < b)


def format_fingerprint(fingerprint: bytes) -> str:
    """Format a fingerprint as uppercase colon-separated hex ("E7:3B:38:...")."""
    return ":".join(f"{b:02X}" for b in fingerprint)


def extract_fingerprint_from_sdp(sdp: str) -> bytes:
    """
    Extract the SHA-256 DTLS fingerprint from an SDP.

    Raises:
        ValueError: If no fingerprint line is present or it is not 32 bytes
    """
    match = _FINGERPRINT_LINE.search(sdp)
    if match is None:
        raise ValueError("No SHA-256 fingerprint found in SDP")

    hex_string = match.group(1).replace(":", "")
    if len(hex_string) != FINGERPRINT_SIZE * 2:
        raise ValueError(
            f"Invalid fingerprint length: expected {FINGERPRINT_SIZE * 2} hex chars, "
            f"got {len(hex_string)}"
        )

    return bytes.fromhex(hex_string)


def generate_session_id(fingerprint: bytes) -> str:
    """
    Derive an SDP session id from a fingerprint.

    The first 8 bytes of SHA-256(fingerprint), read as a big-endian unsigned
    integer and rendered in decimal. Opaque, not a security property.
    """
    digest = hashlib.sha256(fingerprint).digest()
    return str(int.from_bytes(digest[:8], byteorder="big"))


def generate_sas(local_fingerprint: bytes, remote_fingerprint: bytes) -> str:
    """
    Generate a 4-digit Short Authentication String for two fingerprints.

    The fingerprints are concatenated with the greater one first, so both
    peers compute the same code regardless of role. Users compare the codes
    out of band to detect a substituted payload.

    Args:
        local_fingerprint: Our 32-byte fingerprint
        remote_fingerprint: The peer's 32-byte fingerprint

    Returns:
        A zero-padded 4-digit string, e.g. "0427"
    """
    if compare_fingerprints(local_fingerprint, remote_fingerprint) >= 0:
        combined = bytes(local_fingerprint) + bytes(remote_fingerprint)
    else:
        combined = bytes(remote_fingerprint) + bytes(local_fingerprint)

    digest = hashlib.sha256(combined).digest()
    value = int.from_bytes(digest[:2], byteorder="big")

    return f"{value % SAS_MODULUS:04d}"
