"""Models for QWBP candidates, packets and peers."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional

from .types import PROTOCOL_VERSION


class AddressFamily(IntEnum):
    """Address family encoded in bits 0-1 of a candidate's flags byte."""
    IPV4 = 0b00
    IPV6 = 0b01
    MDNS = 0b10


class Protocol(Enum):
    """Transport protocol of a candidate."""
    UDP = "udp"
    TCP = "tcp"


class CandidateType(Enum):
    """ICE candidate type."""
    HOST = "host"
    SRFLX = "srflx"


class TcpType(Enum):
    """TCP candidate subtype (RFC 6544)."""
    PASSIVE = "passive"
    ACTIVE = "active"
    SO = "so"


class Role(Enum):
    """Negotiation role, assigned by fingerprint comparison."""
    OFFERER = "offerer"
    ANSWERER = "answerer"


class ConnectionState(Enum):
    """Lifecycle state of a QWBPConnection."""
    IDLE = "idle"
    GATHERING = "gathering"
    DISPLAYING = "displaying"
    SCANNED_ONE = "scanned-one"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionState.FAILED, ConnectionState.CLOSED)


@dataclass(frozen=True)
class Candidate:
    """An ICE candidate in QWBP form.

    ``ip`` is a dotted IPv4 address, a colon IPv6 address or an mDNS
    hostname (``<uuid>.local``). ``tcp_type`` is set iff the protocol is TCP;
    a TCP candidate built without one is treated as passive.
    """
    ip: str
    port: int
    type: CandidateType = CandidateType.HOST
    protocol: Protocol = Protocol.UDP
    tcp_type: Optional[TcpType] = None

    def __post_init__(self) -> None:
        if not 1 <= self.port <= 65535:
            raise ValueError(f"Port out of range: {self.port}")

        if self.protocol is Protocol.TCP:
            if self.tcp_type is None:
                object.__setattr__(self, "tcp_type", TcpType.PASSIVE)
        elif self.tcp_type is not None:
            raise ValueError("tcp_type is only valid for TCP candidates")

    @property
    def address_family(self) -> AddressFamily:
        """Address family inferred from the textual address."""
        if self.ip.endswith(".local"):
            return AddressFamily.MDNS
        if ":" in self.ip:
            return AddressFamily.IPV6
        return AddressFamily.IPV4

    @property
    def is_ipv4(self) -> bool:
        return self.address_family is AddressFamily.IPV4


@dataclass
class Packet:
    """Decoded QWBP packet."""
    fingerprint: bytes  # 32 bytes
    candidates: list[Candidate] = field(default_factory=list)
    version: int = PROTOCOL_VERSION


@dataclass(frozen=True)
class IceCredentials:
    """ICE credentials derived from a fingerprint via HKDF."""
    ufrag: str  # 6 chars
    pwd: str  # 24 chars


@dataclass(frozen=True)
class PeerInfo:
    """The remote party, captured once from its scanned payload."""
    fingerprint: bytes
    candidates: tuple[Candidate, ...]
    credentials: IceCredentials
