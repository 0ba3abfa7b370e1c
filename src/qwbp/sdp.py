"""
SDP reconstruction for QWBP.

Builds a data-channel-only session description from a peer's fingerprint
and derived credentials, plus individual candidate strings to inject into
the live transport session.
"""

import hashlib
import re
from typing import Optional

from .credentials import derive_credentials, format_fingerprint, generate_session_id
from .models import Candidate, CandidateType, IceCredentials, Protocol
from .types import PRIORITY_HOST_UDP, PRIORITY_HOST_TCP, PRIORITY_SRFLX


# No candidate lines; candidates are added one at a time through the
# transport session.
SDP_TEMPLATE = (
    "v=0\n"
    "o=- {session_id} 2 IN IP4 127.0.0.1\n"
    "s=-\n"
    "t=0 0\n"
    "a=group:BUNDLE 0\n"
    "m=application 9 UDP/DTLS/SCTP webrtc-datachannel\n"
    "c=IN IP4 0.0.0.0\n"
    "a=mid:0\n"
    "a=ice-ufrag:{ufrag}\n"
    "a=ice-pwd:{pwd}\n"
    "a=ice-options:trickle\n"
    "a=fingerprint:sha-256 {fingerprint}\n"
    "a=setup:{setup}\n"
    "a=sctp-port:5000\n"
)

# Placeholder related address for srflx candidates; carries no NAT mapping
SRFLX_RELATED_ADDRESS = "0.0.0.0"
SRFLX_RELATED_PORT = 9

_REQUIRED_LINES = (
    re.compile(r"a=fingerprint:sha-256", re.IGNORECASE),
    re.compile(r"a=ice-ufrag:"),
    re.compile(r"a=ice-pwd:"),
    re.compile(r"m=application"),
)

_UFRAG_LINE = re.compile(r"a=ice-ufrag:\S+")
_PWD_LINE = re.compile(r"a=ice-pwd:\S+")


def reconstruct_sdp(
    fingerprint: bytes,
    is_offer: bool,
    credentials: Optional[IceCredentials] = None,
) -> str:
    """
    Reconstruct a minimal SDP for a peer from its fingerprint.

    Args:
        fingerprint: The peer's 32-byte DTLS fingerprint
        is_offer: True for an offer (setup:actpass), False for an answer (setup:active)
        credentials: Pre-computed credentials; derived from the fingerprint if omitted

    Returns:
        SDP text with CRLF line endings and no candidate lines
    """
    creds = credentials or derive_credentials(fingerprint)

    sdp = SDP_TEMPLATE.format(
        session_id=generate_session_id(fingerprint),
        ufrag=creds.ufrag,
        pwd=creds.pwd,
        fingerprint=format_fingerprint(fingerprint),
        setup="actpass" if is_offer else "active",
    )

    return sdp.replace("\n", "\r\n")


def _foundation(candidate: Candidate) -> str:
    data = f"{candidate.type.value}{candidate.protocol.value}{candidate.ip}{candidate.port}"
    return hashlib.sha256(data.encode("utf-8")).digest()[:4].hex()


def candidate_priority(candidate: Candidate) -> int:
    """Fixed priority per (type, protocol): host/udp > host/tcp > srflx."""
    if candidate.type is CandidateType.SRFLX:
        return PRIORITY_SRFLX
    if candidate.protocol is Protocol.UDP:
        return PRIORITY_HOST_UDP
    return PRIORITY_HOST_TCP


def build_candidate_string(candidate: Candidate) -> str:
    """
    Build a candidate string for injection into the transport.

    Returns:
        A string such as
        "candidate:1a2b3c4d 1 udp 2122260223 192.168.1.5 54321 typ host"
        (no "a=" prefix)
    """
    parts = [
        f"candidate:{_foundation(candidate)}",
        "1",
        candidate.protocol.value,
        str(candidate_priority(candidate)),
        candidate.ip,
        str(candidate.port),
        "typ",
        candidate.type.value,
    ]

    if candidate.type is CandidateType.SRFLX:
        parts += ["raddr", SRFLX_RELATED_ADDRESS, "rport", str(SRFLX_RELATED_PORT)]

    if candidate.protocol is Protocol.TCP and candidate.tcp_type is not None:
        parts += ["tcptype", candidate.tcp_type.value]

    return " ".join(parts)


def validate_sdp(sdp: str) -> bool:
    """Check that an SDP has fingerprint, ICE credential and media lines."""
    return all(pattern.search(sdp) for pattern in _REQUIRED_LINES)


def patch_sdp_credentials(sdp: str, ufrag: str, pwd: str) -> str:
    """Rewrite every ice-ufrag and ice-pwd line of an SDP."""
    sdp = _UFRAG_LINE.sub(f"a=ice-ufrag:{ufrag}", sdp)
    return _PWD_LINE.sub(f"a=ice-pwd:{pwd}", sdp)
