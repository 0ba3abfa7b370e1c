"""Packet encoding and decoding for the QWBP wire format."""

import ipaddress
import logging
import re
import uuid
from typing import Iterable, Optional

from .models import (
    AddressFamily,
    Candidate,
    CandidateType,
    Packet,
    Protocol,
    TcpType,
)
from .types import (
    MAGIC_BYTE,
    PROTOCOL_VERSION,
    FINGERPRINT_SIZE,
    HEADER_SIZE,
    MIN_PACKET_SIZE,
    FAMILY_MASK,
    PROTOCOL_SHIFT,
    TYPE_SHIFT,
    TCP_TYPE_SHIFT,
    VERSION_MASK,
    DEFAULT_MAX_CANDIDATES,
    QWBPEncodeError,
    QWBPDecodeError,
)

logger = logging.getLogger(__name__)


_ADDRESS_LENGTHS = {
    AddressFamily.IPV4: 4,
    AddressFamily.IPV6: 16,
    AddressFamily.MDNS: 16,
}

_FAMILY_NAMES = {
    AddressFamily.IPV4: "IPv4",
    AddressFamily.IPV6: "IPv6",
    AddressFamily.MDNS: "mDNS",
}

_TCP_TYPE_BITS = {
    TcpType.PASSIVE: 0b00,
    TcpType.ACTIVE: 0b01,
    TcpType.SO: 0b10,
}

_TCP_TYPE_FROM_BITS = {
    0b01: TcpType.ACTIVE,
    0b10: TcpType.SO,
}

# a=candidate:<foundation> <component> <protocol> <priority> <ip> <port> typ <type>
_CANDIDATE_LINE = re.compile(
    r"a=candidate:\S+\s+\d+\s+(\w+)\s+\d+\s+(\S+)\s+(\d+)\s+typ\s+(\w+)"
)
_TCP_TYPE_TOKEN = re.compile(r"tcptype\s+(\w+)")


def encode(fingerprint: bytes, candidates: Iterable[Candidate]) -> bytes:
    """
    Encode a fingerprint and candidates into a QWBP packet.

    Format:
        [0]       magic (0x51)
        [1]       bits 0-2 version (0), bits 3-7 reserved (0)
        [2-33]    fingerprint (32 bytes)
        [34+]     candidate records: flags(1) + address(4|16) + port(2)

    Args:
        fingerprint: 32-byte DTLS fingerprint
        candidates: Candidates to encode, in order

    Returns:
        Encoded bytes

    Raises:
        QWBPEncodeError: If the fingerprint length or an address is invalid
    """
    if len(fingerprint) != FINGERPRINT_SIZE:
        raise QWBPEncodeError(
            f"Invalid fingerprint length: expected {FINGERPRINT_SIZE}, got {len(fingerprint)}"
        )

    packet = bytearray([MAGIC_BYTE, PROTOCOL_VERSION & VERSION_MASK])
    packet += fingerprint

    for candidate in candidates:
        packet += _encode_candidate(candidate)

    return bytes(packet)


def _encode_candidate(candidate: Candidate) -> bytes:
    """Encode a single candidate record."""
    family = candidate.address_family

    if family is AddressFamily.MDNS:
        address = _parse_mdns(candidate.ip)
    elif family is AddressFamily.IPV6:
        address = _parse_ipv6(candidate.ip)
    else:
        address = _parse_ipv4(candidate.ip)

    if not 1 <= candidate.port <= 65535:
        raise QWBPEncodeError(f"Invalid port: {candidate.port}")

    flags = int(family)
    if candidate.protocol is Protocol.TCP:
        flags |= 1 << PROTOCOL_SHIFT
        flags |= _TCP_TYPE_BITS[candidate.tcp_type or TcpType.PASSIVE] << TCP_TYPE_SHIFT
    if candidate.type is CandidateType.SRFLX:
        flags |= 1 << TYPE_SHIFT

    return bytes([flags]) + address + candidate.port.to_bytes(2, byteorder="big")


def _parse_ipv4(ip: str) -> bytes:
    """Parse a dotted quad; leading zeros in an octet are read as decimal."""
    normalized = ip
    octets = ip.split(".")
    if len(octets) == 4 and all(octet.isascii() and octet.isdigit() for octet in octets):
        normalized = ".".join(str(int(octet)) for octet in octets)

    try:
        return ipaddress.IPv4Address(normalized).packed
    except ValueError:
        raise QWBPEncodeError(f"Invalid IPv4 address: {ip}")


def _parse_ipv6(ip: str) -> bytes:
    """Parse standard, compressed, bracketed and IPv4-mapped IPv6 literals."""
    cleaned = ip
    if cleaned.startswith("[") and cleaned.endswith("]"):
        cleaned = cleaned[1:-1]

    # Zone ids are host-local and cannot be carried on the wire
    if "%" in cleaned:
        raise QWBPEncodeError(f"Invalid IPv6 address: {ip}")

    try:
        return ipaddress.IPv6Address(cleaned).packed
    except ValueError:
        raise QWBPEncodeError(f"Invalid IPv6 address: {ip}")


def _parse_mdns(hostname: str) -> bytes:
    """Parse xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx.local into 16 UUID bytes."""
    hex_digits = hostname[: -len(".local")].replace("-", "")
    if len(hex_digits) != 32:
        raise QWBPEncodeError(f"Invalid mDNS UUID: {hostname}")

    try:
        return bytes.fromhex(hex_digits)
    except ValueError:
        raise QWBPEncodeError(f"Invalid mDNS UUID: {hostname}")


def decode(data: bytes) -> Packet:
    """
    Decode bytes into a QWBP packet.

    Args:
        data: Encoded packet bytes

    Returns:
        Decoded Packet

    Raises:
        QWBPDecodeError: If the packet is short, has a bad magic byte or
            version, or contains a truncated or unknown candidate record
    """
    data = bytes(data)

    if len(data) < MIN_PACKET_SIZE:
        raise QWBPDecodeError(
            f"Packet too short: expected at least {MIN_PACKET_SIZE} bytes, got {len(data)}",
            field="length",
        )

    if data[0] != MAGIC_BYTE:
        raise QWBPDecodeError(
            f"Invalid magic byte: expected 0x{MAGIC_BYTE:02x}, got 0x{data[0]:02x}",
            field="magic",
        )

    version = data[1] & VERSION_MASK
    if version != PROTOCOL_VERSION:
        raise QWBPDecodeError(f"Unsupported protocol version: {version}", field="version")

    offset = HEADER_SIZE
    fingerprint = data[offset : offset + FINGERPRINT_SIZE]
    offset += FINGERPRINT_SIZE

    candidates = []
    while offset < len(data):
        candidate, offset = _decode_candidate(data, offset, len(candidates))
        candidates.append(candidate)

    return Packet(fingerprint=fingerprint, candidates=candidates, version=version)


def _decode_candidate(data: bytes, offset: int, index: int) -> tuple[Candidate, int]:
    """Decode one candidate record, returning it with the next offset."""
    field = f"candidate[{index}]"
    flags = data[offset]

    try:
        family = AddressFamily(flags & FAMILY_MASK)
    except ValueError:
        raise QWBPDecodeError(f"Unknown address family: {flags & FAMILY_MASK}", field=field)

    address_length = _ADDRESS_LENGTHS[family]
    end = offset + 1 + address_length + 2
    if end > len(data):
        raise QWBPDecodeError(
            f"Packet truncated: incomplete {_FAMILY_NAMES[family]} candidate",
            field=field,
        )

    address = data[offset + 1 : offset + 1 + address_length]
    if family is AddressFamily.IPV4:
        ip = str(ipaddress.IPv4Address(address))
    elif family is AddressFamily.IPV6:
        ip = ipaddress.IPv6Address(address).compressed
    else:
        ip = f"{uuid.UUID(bytes=address)}.local"

    port = int.from_bytes(data[end - 2 : end], byteorder="big")
    if port == 0:
        raise QWBPDecodeError("Invalid port: 0", field=field)

    protocol = Protocol.TCP if (flags >> PROTOCOL_SHIFT) & 0b1 else Protocol.UDP
    candidate_type = CandidateType.SRFLX if (flags >> TYPE_SHIFT) & 0b1 else CandidateType.HOST

    tcp_type = None
    if protocol is Protocol.TCP:
        tcp_type = _TCP_TYPE_FROM_BITS.get((flags >> TCP_TYPE_SHIFT) & 0b11, TcpType.PASSIVE)

    candidate = Candidate(
        ip=ip,
        port=port,
        type=candidate_type,
        protocol=protocol,
        tcp_type=tcp_type,
    )
    return candidate, end


def is_valid_packet(data: bytes) -> bool:
    """
    Check if data looks like a QWBP packet without fully parsing it.

    Only the length, magic byte and version are checked, so arbitrary
    scanned codes can be rejected cheaply.
    """
    if len(data) < MIN_PACKET_SIZE:
        return False

    return data[0] == MAGIC_BYTE and (data[1] & VERSION_MASK) == PROTOCOL_VERSION


def select_candidates(
    candidates: Iterable[Candidate],
    max_candidates: int = DEFAULT_MAX_CANDIDATES,
) -> list[Candidate]:
    """
    Pick the candidates to advertise.

    IPv4 is ordered before IPv6/mDNS within each type. When a server-reflexive
    candidate is known, one slot is reserved for the best one and the rest
    are filled with host candidates; otherwise all slots go to hosts.
    """
    pool = list(candidates)
    hosts = sorted(
        (c for c in pool if c.type is CandidateType.HOST),
        key=lambda c: not c.is_ipv4,
    )
    srflx = sorted(
        (c for c in pool if c.type is CandidateType.SRFLX),
        key=lambda c: not c.is_ipv4,
    )

    if max_candidates < 1:
        return []

    if srflx:
        return hosts[: max_candidates - 1] + srflx[:1]

    return hosts[:max_candidates]


def parse_candidate_line(line: str) -> Optional[Candidate]:
    """
    Parse an SDP candidate line into a Candidate.

    Returns None for relay/prflx candidates, unknown protocols or bad ports.
    """
    match = _CANDIDATE_LINE.search(line)
    if match is None:
        return None

    protocol_name, ip, port_text, type_name = match.groups()

    try:
        protocol = Protocol(protocol_name.lower())
        candidate_type = CandidateType(type_name.lower())
    except ValueError:
        return None

    port = int(port_text)
    if not 1 <= port <= 65535:
        return None

    tcp_type = None
    if protocol is Protocol.TCP:
        tcp_match = _TCP_TYPE_TOKEN.search(line)
        if tcp_match:
            try:
                tcp_type = TcpType(tcp_match.group(1).lower())
            except ValueError:
                tcp_type = None

    return Candidate(
        ip=ip,
        port=port,
        type=candidate_type,
        protocol=protocol,
        tcp_type=tcp_type,
    )


def extract_candidates_from_sdp(
    sdp: str,
    max_candidates: int = DEFAULT_MAX_CANDIDATES,
) -> list[Candidate]:
    """
    Extract candidates from an SDP and apply the selection policy.

    Args:
        sdp: SDP text containing a=candidate lines
        max_candidates: Maximum number of candidates to keep

    Returns:
        Selected candidates, hosts first
    """
    parsed = []
    for line in sdp.splitlines():
        line = line.strip()
        if not line.startswith("a=candidate:"):
            continue

        candidate = parse_candidate_line(line)
        if candidate is None:
            logger.debug(f"Skipping unsupported candidate line: {line}")
            continue
        parsed.append(candidate)

    return select_candidates(parsed, max_candidates)
