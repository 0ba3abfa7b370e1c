"""Tests for QWBP packet encoding and decoding."""

import pytest
from qwbp.models import AddressFamily, Candidate, CandidateType, Protocol, TcpType
from qwbp.packet import (
    decode,
    encode,
    extract_candidates_from_sdp,
    is_valid_packet,
    parse_candidate_line,
    select_candidates,
)
from qwbp.types import MIN_PACKET_SIZE, QWBPDecodeError, QWBPEncodeError
from .test_vectors import (
    BROWSER_OFFER_SDP,
    IPV6_CANDIDATE,
    MDNS_CANDIDATE,
    MINIMAL_PACKET_HEX,
    TCP_ACTIVE_CANDIDATE,
    TEST_FINGERPRINT,
    TYPICAL_CANDIDATES,
)


class TestEncode:
    """Test packet encoding."""

    def test_minimal_packet(self) -> None:
        """One IPv4 host candidate encodes to the 41-byte minimum."""
        packet = encode(TEST_FINGERPRINT, [Candidate(ip="192.168.1.5", port=54321)])

        assert len(packet) == MIN_PACKET_SIZE == 41
        assert packet == bytes.fromhex(MINIMAL_PACKET_HEX)

    def test_typical_packet(self) -> None:
        """Three hosts and one srflx encode to 62 bytes."""
        packet = encode(TEST_FINGERPRINT, TYPICAL_CANDIDATES)

        assert len(packet) == 62
        assert packet[0] == 0x51
        assert packet[1] == 0x00
        assert packet[2:34] == TEST_FINGERPRINT

        flags = [packet[34 + i * 7] for i in range(4)]
        assert flags == [0x00, 0x00, 0x00, 0x08]

    def test_ipv6_flags_and_size(self) -> None:
        """IPv6 candidates use family 01 and a 16-byte address."""
        packet = encode(TEST_FINGERPRINT, [IPV6_CANDIDATE])

        assert len(packet) == 34 + 19
        assert packet[34] == 0x01
        assert packet[35:51] == bytes.fromhex("20010db8000000000000000000000001")
        assert packet[51:53] == (443).to_bytes(2, "big")

    def test_mdns_flags_and_uuid(self) -> None:
        """mDNS hostnames are carried as their 16 UUID bytes."""
        packet = encode(TEST_FINGERPRINT, [MDNS_CANDIDATE])

        assert len(packet) == 34 + 19
        assert packet[34] == 0x02
        assert packet[35:51] == bytes.fromhex("a1b2c3d4e5f64789abcdef0123456789")

    @pytest.mark.parametrize(
        "tcp_type,expected_flags",
        [
            (TcpType.PASSIVE, 0x04),
            (TcpType.ACTIVE, 0x14),
            (TcpType.SO, 0x24),
        ],
    )
    def test_tcp_subtype_bits(self, tcp_type, expected_flags) -> None:
        """TCP sets bit 2 and the subtype in bits 4-5."""
        candidate = Candidate(ip="192.168.1.5", port=9, protocol=Protocol.TCP, tcp_type=tcp_type)
        packet = encode(TEST_FINGERPRINT, [candidate])

        assert packet[34] == expected_flags

    def test_bracketed_ipv6(self) -> None:
        """Bracketed IPv6 literals encode like bare ones."""
        bare = encode(TEST_FINGERPRINT, [Candidate(ip="2001:db8::1", port=443)])
        bracketed = encode(TEST_FINGERPRINT, [Candidate(ip="[2001:db8::1]", port=443)])

        assert bare == bracketed

    @pytest.mark.parametrize("ip", ["192.168.01.5", "192.168.001.005", "0192.0168.1.5"])
    def test_ipv4_leading_zero_octets(self, ip) -> None:
        """Zero-padded octets are read as decimal, not octal."""
        packet = encode(TEST_FINGERPRINT, [Candidate(ip=ip, port=54321)])

        assert packet == bytes.fromhex(MINIMAL_PACKET_HEX)

    def test_ipv4_padded_octet_out_of_range(self) -> None:
        with pytest.raises(QWBPEncodeError, match="Invalid IPv4 address: 192.168.0256.5"):
            encode(TEST_FINGERPRINT, [Candidate(ip="192.168.0256.5", port=54321)])

    def test_ipv4_mapped_ipv6(self) -> None:
        """IPv4-mapped IPv6 encodes the mapped address in the low bytes."""
        packet = encode(TEST_FINGERPRINT, [Candidate(ip="::ffff:192.168.1.1", port=443)])

        assert packet[34] == 0x01
        assert packet[35:51] == bytes.fromhex("00000000000000000000ffffc0a80101")

    def test_no_candidates(self) -> None:
        """A packet without candidates is just header and fingerprint."""
        packet = encode(TEST_FINGERPRINT, [])

        assert len(packet) == 34
        assert not is_valid_packet(packet)

    @pytest.mark.parametrize("length", [0, 16, 31, 33])
    def test_rejects_bad_fingerprint_length(self, length) -> None:
        """Fingerprints must be exactly 32 bytes."""
        with pytest.raises(QWBPEncodeError, match="fingerprint length"):
            encode(bytes(length), TYPICAL_CANDIDATES)

    @pytest.mark.parametrize(
        "ip",
        [
            "256.1.1.1",
            "192.168.1",
            "fe80::1%eth0",
            "2001:db8:::1",
            "not-a-uuid.local",
            "zzzzzzzz-zzzz-zzzz-zzzz-zzzzzzzzzzzz.local",
        ],
    )
    def test_rejects_invalid_address(self, ip) -> None:
        """Unparseable addresses fail with an encode error."""
        with pytest.raises(QWBPEncodeError):
            encode(TEST_FINGERPRINT, [Candidate(ip=ip, port=5000)])


class TestDecode:
    """Test packet decoding."""

    def test_minimal_packet(self) -> None:
        """The minimal vector decodes to one IPv4 host candidate."""
        packet = decode(bytes.fromhex(MINIMAL_PACKET_HEX))

        assert packet.version == 0
        assert packet.fingerprint == TEST_FINGERPRINT
        assert packet.candidates == [Candidate(ip="192.168.1.5", port=54321)]

    def test_typical_round_trip(self) -> None:
        """Candidates survive encoding unchanged and in order."""
        packet = decode(encode(TEST_FINGERPRINT, TYPICAL_CANDIDATES))

        assert packet.candidates == TYPICAL_CANDIDATES
        assert packet.candidates[3].type is CandidateType.SRFLX

    def test_mixed_families_round_trip(self) -> None:
        """IPv4, IPv6, mDNS and TCP candidates decode back to their inputs."""
        candidates = [
            Candidate(ip="192.168.1.5", port=54321),
            IPV6_CANDIDATE,
            MDNS_CANDIDATE,
            TCP_ACTIVE_CANDIDATE,
        ]
        packet = decode(encode(TEST_FINGERPRINT, candidates))

        assert packet.candidates == candidates
        assert [c.address_family for c in packet.candidates] == [
            AddressFamily.IPV4,
            AddressFamily.IPV6,
            AddressFamily.MDNS,
            AddressFamily.IPV4,
        ]

    def test_ipv6_is_compressed(self) -> None:
        """Decoded IPv6 addresses use the compressed textual form."""
        packet = decode(encode(TEST_FINGERPRINT, [Candidate(ip="2001:0db8:0000:0000:0000:0000:0000:0001", port=1)]))

        assert packet.candidates[0].ip == "2001:db8::1"

    def test_mdns_is_lowercase_uuid(self) -> None:
        """Decoded mDNS hostnames are lowercase 8-4-4-4-12 UUIDs with .local."""
        upper = Candidate(ip="A1B2C3D4-E5F6-4789-ABCD-EF0123456789.local", port=5000)
        packet = decode(encode(TEST_FINGERPRINT, [upper]))

        assert packet.candidates[0].ip == MDNS_CANDIDATE.ip

    def test_tcp_subtype_defaults_to_passive(self) -> None:
        """Unknown TCP subtype bits decode as passive."""
        data = bytearray(bytes.fromhex(MINIMAL_PACKET_HEX))
        data[34] = 0x04 | (0b11 << 4)

        packet = decode(bytes(data))

        assert packet.candidates[0].protocol is Protocol.TCP
        assert packet.candidates[0].tcp_type is TcpType.PASSIVE

    def test_reserved_header_bits_ignored(self) -> None:
        """Reserved bits 3-7 of the version byte are ignored."""
        data = bytearray(bytes.fromhex(MINIMAL_PACKET_HEX))
        data[1] = 0xF8

        packet = decode(bytes(data))

        assert packet.version == 0
        assert len(packet.candidates) == 1

    def test_rejects_short_packet(self) -> None:
        """Anything under 41 bytes is rejected."""
        with pytest.raises(QWBPDecodeError, match="too short") as exc_info:
            decode(bytes.fromhex(MINIMAL_PACKET_HEX)[:40])

        assert exc_info.value.field == "length"

    def test_rejects_bad_magic(self) -> None:
        """The first byte must be 0x51."""
        data = bytearray(bytes.fromhex(MINIMAL_PACKET_HEX))
        data[0] = 0x52

        with pytest.raises(QWBPDecodeError, match="Invalid magic byte") as exc_info:
            decode(bytes(data))

        assert exc_info.value.field == "magic"

    def test_rejects_unknown_version(self) -> None:
        """Only version 0 is accepted."""
        data = bytearray(bytes.fromhex(MINIMAL_PACKET_HEX))
        data[1] = 0x01

        with pytest.raises(QWBPDecodeError, match="version") as exc_info:
            decode(bytes(data))

        assert exc_info.value.field == "version"

    @pytest.mark.parametrize(
        "tail,family",
        [
            ("00c0a8", "IPv4"),
            ("0120010db8000000000000", "IPv6"),
            ("02a1b2c3d4e5f64789abcdef01234567", "mDNS"),
        ],
    )
    def test_rejects_truncated_candidate(self, tail, family) -> None:
        """A partial trailing record names its family."""
        data = bytes.fromhex(MINIMAL_PACKET_HEX + tail)

        with pytest.raises(QWBPDecodeError, match=f"incomplete {family} candidate") as exc_info:
            decode(data)

        assert exc_info.value.field == "candidate[1]"

    def test_rejects_unknown_family(self) -> None:
        """Family bits 11 are reserved."""
        data = bytes.fromhex(MINIMAL_PACKET_HEX + "03c0a80105d431")

        with pytest.raises(QWBPDecodeError, match="address family") as exc_info:
            decode(data)

        assert exc_info.value.field == "candidate[1]"

    def test_rejects_port_zero(self) -> None:
        """Port 0 is not a usable candidate."""
        data = bytes.fromhex(MINIMAL_PACKET_HEX[:-4] + "0000")

        with pytest.raises(QWBPDecodeError, match="port") as exc_info:
            decode(data)

        assert exc_info.value.field == "candidate[0]"


class TestIsValidPacket:
    """Test the cheap packet check."""

    def test_accepts_minimal_packet(self) -> None:
        assert is_valid_packet(bytes.fromhex(MINIMAL_PACKET_HEX))

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"https://example.com/not-a-qwbp-code",
            bytes.fromhex(MINIMAL_PACKET_HEX)[:40],
            bytes.fromhex("52" + MINIMAL_PACKET_HEX[2:]),
            bytes.fromhex("5101" + MINIMAL_PACKET_HEX[4:]),
        ],
    )
    def test_rejects(self, data) -> None:
        assert not is_valid_packet(data)


class TestSelectCandidates:
    """Test candidate selection."""

    def test_keeps_typical_set(self) -> None:
        """Three hosts and one srflx fit in four slots."""
        assert select_candidates(TYPICAL_CANDIDATES, 4) == TYPICAL_CANDIDATES

    def test_reserves_slot_for_srflx(self) -> None:
        """With many hosts, the last slot still goes to the srflx."""
        hosts = [Candidate(ip=f"192.168.1.{i}", port=5000 + i) for i in range(1, 6)]
        srflx = [
            Candidate(ip="203.0.113.7", port=61000, type=CandidateType.SRFLX),
            Candidate(ip="203.0.113.8", port=61001, type=CandidateType.SRFLX),
        ]

        selected = select_candidates(srflx + hosts, 4)

        assert selected == hosts[:3] + srflx[:1]

    def test_all_hosts_without_srflx(self) -> None:
        """Without a srflx every slot goes to hosts."""
        hosts = [Candidate(ip=f"192.168.1.{i}", port=5000 + i) for i in range(1, 6)]

        assert select_candidates(hosts, 4) == hosts[:4]

    def test_prefers_ipv4(self) -> None:
        """IPv4 hosts are ordered before IPv6 and mDNS hosts."""
        ipv4 = Candidate(ip="192.168.1.5", port=5000)

        selected = select_candidates([MDNS_CANDIDATE, IPV6_CANDIDATE, ipv4], 4)

        assert selected[0] == ipv4
        assert set(selected[1:]) == {MDNS_CANDIDATE, IPV6_CANDIDATE}

    def test_single_slot_with_srflx(self) -> None:
        """A single slot is taken by the srflx."""
        selected = select_candidates(TYPICAL_CANDIDATES, 1)

        assert selected == [TYPICAL_CANDIDATES[3]]


class TestSdpCandidates:
    """Test candidate extraction from SDP."""

    def test_parse_host_line(self) -> None:
        candidate = parse_candidate_line("a=candidate:2 1 udp 2122260223 192.168.1.5 50000 typ host")

        assert candidate == Candidate(ip="192.168.1.5", port=50000)

    def test_parse_tcp_line(self) -> None:
        candidate = parse_candidate_line(
            "a=candidate:3 1 TCP 1518280447 192.168.1.5 9 typ host tcptype active"
        )

        assert candidate == TCP_ACTIVE_CANDIDATE

    @pytest.mark.parametrize(
        "line",
        [
            "a=candidate:5 1 udp 41885439 198.51.100.1 3478 typ relay raddr 203.0.113.7 rport 61000",
            "a=candidate:6 1 udp 1845501695 198.51.100.2 3478 typ prflx",
            "a=candidate:7 1 sctp 1 192.168.1.5 5000 typ host",
            "a=candidate:8 1 udp 1 192.168.1.5 0 typ host",
            "a=ice-ufrag:abcd",
        ],
    )
    def test_parse_rejects(self, line) -> None:
        assert parse_candidate_line(line) is None

    def test_extract_from_browser_offer(self) -> None:
        """Relay candidates are dropped and selection is applied."""
        candidates = extract_candidates_from_sdp(BROWSER_OFFER_SDP, 4)

        assert candidates == [
            Candidate(ip="192.168.1.5", port=50000),
            TCP_ACTIVE_CANDIDATE,
            Candidate(ip="fd00::5", port=50001),
            Candidate(ip="203.0.113.7", port=61000, type=CandidateType.SRFLX),
        ]

    def test_extract_respects_max(self) -> None:
        candidates = extract_candidates_from_sdp(BROWSER_OFFER_SDP, 2)

        assert candidates == [
            Candidate(ip="192.168.1.5", port=50000),
            Candidate(ip="203.0.113.7", port=61000, type=CandidateType.SRFLX),
        ]

    def test_extract_from_sdp_without_candidates(self) -> None:
        assert extract_candidates_from_sdp("v=0\r\nm=application 9 UDP/DTLS/SCTP webrtc-datachannel\r\n") == []
