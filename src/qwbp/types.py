"""Protocol constants and error types for QWBP."""

from typing import Optional


# Protocol constants
MAGIC_BYTE = 0x51  # 'Q'
PROTOCOL_VERSION = 0
FINGERPRINT_SIZE = 32
HEADER_SIZE = 2
IPV4_CANDIDATE_SIZE = 1 + 4 + 2  # flags + address + port
IPV6_CANDIDATE_SIZE = 1 + 16 + 2  # flags + address/uuid + port
MIN_PACKET_SIZE = HEADER_SIZE + FINGERPRINT_SIZE + IPV4_CANDIDATE_SIZE

# Flag bit layout
FAMILY_MASK = 0b11
PROTOCOL_SHIFT = 2
TYPE_SHIFT = 3
TCP_TYPE_SHIFT = 4
VERSION_MASK = 0b111

# Key derivation constants
HKDF_INFO_UFRAG = b"QWBP-ICE-UFRAG-v1"
HKDF_INFO_PWD = b"QWBP-ICE-PWD-v1"
HKDF_UFRAG_LENGTH = 4  # 6 base64url chars
HKDF_PWD_LENGTH = 18  # 24 base64url chars
SAS_MODULUS = 10000

# ICE candidate priorities (RFC 8445)
PRIORITY_HOST_UDP = 2122260223
PRIORITY_HOST_TCP = 2105524223
PRIORITY_SRFLX = 1686052607

# Connection defaults
DEFAULT_TIMEOUT = 30000  # ms
DEFAULT_GATHERING_TIMEOUT = 10000  # ms
DEFAULT_MAX_CANDIDATES = 4
DEFAULT_STUN_URLS = (
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
)
DATA_CHANNEL_LABEL = "qwbp"
BOOTSTRAP_CHANNEL_LABEL = "init"

# Screen-displayed codes have perfect contrast, so the lowest error
# correction level keeps the symbol version small.
QR_ERROR_CORRECTION_LEVEL = "L"


# Exception types
class QWBPError(Exception):
    """Base exception for QWBP errors."""
    pass


class QWBPEncodeError(QWBPError):
    """Packet encoding failed (bad fingerprint length or address literal)."""
    pass


class QWBPDecodeError(QWBPError):
    """Packet decoding failed.

    Attributes:
        field: Name of the offending field (e.g. "magic", "candidate[1]").
    """

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message)


class QWBPConnectionError(QWBPError):
    """Connection establishment failed or an operation was invalid.

    Attributes:
        state: Connection state at the time of failure.
    """

    def __init__(self, message: str, state: Optional[object] = None) -> None:
        self.state = state
        super().__init__(message)


class QWBPTimeoutError(QWBPConnectionError):
    """Session timed out before the data channel opened."""

    def __init__(self, state: Optional[object] = None) -> None:
        super().__init__("Session timeout", state)


class QWBPSelfConnectionError(QWBPConnectionError):
    """The scanned payload carries our own fingerprint."""

    def __init__(self, state: Optional[object] = None) -> None:
        super().__init__("Cannot connect to self", state)


class QWBPIceError(QWBPConnectionError):
    """ICE connectivity failed.

    Attributes:
        ice_state: The ICE connection state reported by the transport.
    """

    def __init__(self, ice_state: str, state: Optional[object] = None) -> None:
        self.ice_state = ice_state
        super().__init__(f"ICE connection {ice_state}", state)
