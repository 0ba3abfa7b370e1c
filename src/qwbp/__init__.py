"""
QWBP - QR-Code WebRTC Bootstrap Protocol

Python implementation of serverless WebRTC connection setup where each
device shows one QR code carrying its DTLS fingerprint and ICE candidates.
"""

from .packet import (
    encode,
    decode,
    is_valid_packet,
    select_candidates,
    parse_candidate_line,
    extract_candidates_from_sdp,
)
from .credentials import (
    derive_credentials,
    compare_fingerprints,
    format_fingerprint,
    extract_fingerprint_from_sdp,
    generate_session_id,
    generate_sas,
    base64url_encode,
    base64url_decode,
)
from .sdp import (
    reconstruct_sdp,
    build_candidate_string,
    candidate_priority,
    validate_sdp,
    patch_sdp_credentials,
)
from .models import (
    AddressFamily,
    Protocol,
    CandidateType,
    TcpType,
    Role,
    ConnectionState,
    Candidate,
    Packet,
    IceCredentials,
    PeerInfo,
)
from .types import (
    MAGIC_BYTE,
    PROTOCOL_VERSION,
    FINGERPRINT_SIZE,
    MIN_PACKET_SIZE,
    DATA_CHANNEL_LABEL,
    QR_ERROR_CORRECTION_LEVEL,
    QWBPError,
    QWBPEncodeError,
    QWBPDecodeError,
    QWBPConnectionError,
    QWBPTimeoutError,
    QWBPSelfConnectionError,
    QWBPIceError,
)
from .transport import (
    IceServer,
    SessionDescription,
    Certificate,
    DataChannel,
    TransportSession,
    Transport,
)
from .config import QWBPConfig
from .connection import QWBPConnection

__version__ = "0.1.0"

__all__ = [
    # Packet
    "encode",
    "decode",
    "is_valid_packet",
    "select_candidates",
    "parse_candidate_line",
    "extract_candidates_from_sdp",
    # Credentials
    "derive_credentials",
    "compare_fingerprints",
    "format_fingerprint",
    "extract_fingerprint_from_sdp",
    "generate_session_id",
    "generate_sas",
    "base64url_encode",
    "base64url_decode",
    # SDP
    "reconstruct_sdp",
    "build_candidate_string",
    "candidate_priority",
    "validate_sdp",
    "patch_sdp_credentials",
    # Models
    "AddressFamily",
    "Protocol",
    "CandidateType",
    "TcpType",
    "Role",
    "ConnectionState",
    "Candidate",
    "Packet",
    "IceCredentials",
    "PeerInfo",
    # Errors
    "QWBPError",
    "QWBPEncodeError",
    "QWBPDecodeError",
    "QWBPConnectionError",
    "QWBPTimeoutError",
    "QWBPSelfConnectionError",
    "QWBPIceError",
    # Constants
    "MAGIC_BYTE",
    "PROTOCOL_VERSION",
    "FINGERPRINT_SIZE",
    "MIN_PACKET_SIZE",
    "DATA_CHANNEL_LABEL",
    "QR_ERROR_CORRECTION_LEVEL",
    # Transport
    "IceServer",
    "SessionDescription",
    "Certificate",
    "DataChannel",
    "TransportSession",
    "Transport",
    # Connection
    "QWBPConfig",
    "QWBPConnection",
]
