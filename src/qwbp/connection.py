"""
QWBP connection manager.

The QWBPConnection drives a single transport session from certificate
generation to an open data channel, using QR payloads as the only signaling.
ICE credentials are derived from fingerprints on both sides and the
offer/answer roles are assigned by fingerprint comparison, so neither peer
ever waits on the other to decide who initiates.
"""

import asyncio
import logging
from typing import Callable, Optional

from .config import QWBPConfig
from .credentials import (
    compare_fingerprints,
    derive_credentials,
    extract_fingerprint_from_sdp,
    generate_sas,
)
from .models import Candidate, ConnectionState, IceCredentials, PeerInfo, Role
from .packet import decode, encode, extract_candidates_from_sdp, is_valid_packet
from .sdp import build_candidate_string, patch_sdp_credentials, reconstruct_sdp
from .transport import DataChannel, SessionDescription, Transport, TransportSession
from .types import (
    BOOTSTRAP_CHANNEL_LABEL,
    DATA_CHANNEL_LABEL,
    QWBPConnectionError,
    QWBPError,
    QWBPIceError,
    QWBPSelfConnectionError,
    QWBPTimeoutError,
)

logger = logging.getLogger(__name__)


StateCallback = Callable[[ConnectionState], None]
DataChannelCallback = Callable[[DataChannel], None]
ErrorCallback = Callable[[Exception], None]


class QWBPConnection:
    """
    High-level connection manager for QWBP.

    The QWBPConnection handles:
    - Certificate generation and ICE gathering
    - Building the payload to display as a QR code
    - Processing the peer's scanned payload
    - Role assignment and offer/answer negotiation
    - Data channel readiness, failures and timeouts

    Example usage:
        ```python
        conn = QWBPConnection(QWBPConfig())
        conn.on_data_channel(lambda channel: channel.send("Hello!"))

        await conn.initialize()
        show_qr(conn.get_payload())

        # After scanning the other device's code:
        await conn.process_scanned_payload(scanned_bytes)
        print(f"Verify code: {conn.get_short_auth_string()}")
        ```
    """

    def __init__(
        self,
        config: Optional[QWBPConfig] = None,
        transport: Optional[Transport] = None,
    ) -> None:
        """
        Initialize the connection.

        Args:
            config: Connection configuration (default: public STUN, 4 candidates, 30s).
            transport: Transport implementation (default: aiortc).
        """
        if transport is None:
            from .aiortc_transport import AiortcTransport

            transport = AiortcTransport()

        self.config = config or QWBPConfig()
        self.transport = transport

        self._state = ConnectionState.IDLE
        self._session: Optional[TransportSession] = None
        self._bootstrap_channel: Optional[DataChannel] = None
        self._data_channel: Optional[DataChannel] = None
        self._local_fingerprint: Optional[bytes] = None
        self._local_credentials: Optional[IceCredentials] = None
        self._local_candidates: list[Candidate] = []
        self._peer: Optional[PeerInfo] = None
        self._role: Optional[Role] = None
        self._timeout_handle: Optional[asyncio.TimerHandle] = None

        self._gathering_done: Optional[asyncio.Event] = None
        self._gathered_count = 0

        self._state_callbacks: list[StateCallback] = []
        self._data_channel_callbacks: list[DataChannelCallback] = []
        self._error_callbacks: list[ErrorCallback] = []

    @property
    def connection_state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def assigned_role(self) -> Optional[Role]:
        """Offerer or answerer; None until the peer has been scanned."""
        return self._role

    @property
    def local_fingerprint(self) -> Optional[bytes]:
        """Our 32-byte DTLS fingerprint, available after initialize()."""
        return self._local_fingerprint

    @property
    def peer_info(self) -> Optional[PeerInfo]:
        """The scanned peer, if any."""
        return self._peer

    # MARK: - Subscriptions

    def on_state_change(self, callback: StateCallback) -> None:
        """Register a callback invoked with each new state."""
        self._state_callbacks.append(callback)

    def on_data_channel(self, callback: DataChannelCallback) -> None:
        """
        Register a callback invoked when the data channel opens.

        If the channel is already open the callback is invoked immediately.
        """
        self._data_channel_callbacks.append(callback)

        if self._data_channel is not None and self._data_channel.ready_state == "open":
            callback(self._data_channel)

    def on_error(self, callback: ErrorCallback) -> None:
        """Register a callback for asynchronous failures (timeout, ICE, channel)."""
        self._error_callbacks.append(callback)

    # MARK: - Lifecycle

    async def initialize(self) -> None:
        """
        Generate a certificate, gather candidates and prepare the payload.

        Must be called before get_payload(). The transport session created
        here is reused for the actual connection after role assignment.

        Raises:
            QWBPConnectionError: If called in the wrong state or gathering
                produces no usable candidates.
        """
        if self._state is not ConnectionState.IDLE:
            raise QWBPConnectionError(f"Cannot initialize in state: {self._state.value}", self._state)

        self._set_state(ConnectionState.GATHERING)

        certificate = await self.transport.generate_certificate()
        if self._state is ConnectionState.CLOSED:
            return

        session = self.transport.create_session(self.config.ice_servers, certificate)
        self._session = session

        self._gathering_done = asyncio.Event()
        session.on("icecandidate", self._on_ice_candidate)
        session.on("icegatheringstatechange", self._on_gathering_state_change)

        # Only used to make the offer carry an application m-line; replaced
        # after role assignment
        self._bootstrap_channel = session.create_data_channel(BOOTSTRAP_CHANNEL_LABEL)

        offer = await session.create_offer()
        if self._state is ConnectionState.CLOSED:
            return

        self._local_fingerprint = extract_fingerprint_from_sdp(offer.sdp)
        self._local_credentials = derive_credentials(self._local_fingerprint)

        patched = patch_sdp_credentials(
            offer.sdp,
            self._local_credentials.ufrag,
            self._local_credentials.pwd,
        )
        await session.set_local_description(SessionDescription(sdp=patched, type="offer"))

        await self._wait_for_gathering()
        if self._state is ConnectionState.CLOSED:
            return

        local = session.local_description
        self._local_candidates = extract_candidates_from_sdp(
            local.sdp if local else "",
            self.config.max_candidates,
        )
        if not self._local_candidates:
            self._set_state(ConnectionState.FAILED)
            raise QWBPConnectionError("No usable ICE candidates gathered", ConnectionState.GATHERING)

        logger.debug(f"Gathered {len(self._local_candidates)} candidates for payload")

        self._set_state(ConnectionState.DISPLAYING)
        self._start_timeout()

    def get_payload(self) -> bytes:
        """
        Get the binary payload to display as a QR code (byte mode).

        Raises:
            QWBPConnectionError: If called before initialize() completed.
        """
        if self._state not in (ConnectionState.DISPLAYING, ConnectionState.SCANNED_ONE):
            raise QWBPConnectionError(f"Cannot get payload in state: {self._state.value}", self._state)

        if self._local_fingerprint is None:
            raise QWBPConnectionError("Connection not initialized", self._state)

        return encode(self._local_fingerprint, self._local_candidates)

    async def process_scanned_payload(self, data: bytes) -> None:
        """
        Process the payload scanned from the peer's QR code.

        Args:
            data: Raw bytes read from the QR code.

        Raises:
            QWBPConnectionError: If called in the wrong state, the peer was
                already scanned, or the data is not a QWBP packet.
            QWBPDecodeError: If the packet is malformed.
            QWBPSelfConnectionError: If the payload is our own.
        """
        if self._state not in (ConnectionState.DISPLAYING, ConnectionState.SCANNED_ONE):
            raise QWBPConnectionError(f"Cannot process payload in state: {self._state.value}", self._state)

        if self._peer is not None:
            raise QWBPConnectionError("Peer already scanned", self._state)

        if not is_valid_packet(data):
            raise QWBPConnectionError("Invalid QWBP packet", self._state)

        packet = decode(data)

        if compare_fingerprints(self._local_fingerprint, packet.fingerprint) == 0:
            raise QWBPSelfConnectionError(self._state)

        self._peer = PeerInfo(
            fingerprint=packet.fingerprint,
            candidates=tuple(packet.candidates),
            credentials=derive_credentials(packet.fingerprint),
        )
        logger.debug(f"Recorded peer with {len(packet.candidates)} candidates")

        if self._state is ConnectionState.DISPLAYING:
            self._set_state(ConnectionState.SCANNED_ONE)

        await self._negotiate()

    def get_data_channel(self) -> Optional[DataChannel]:
        """The application data channel, once created or received."""
        return self._data_channel

    def get_short_auth_string(self) -> Optional[str]:
        """
        Get the 4-digit code both users should compare.

        Returns:
            The code, or None until the peer has been scanned.
        """
        if self._local_fingerprint is None or self._peer is None:
            return None

        return generate_sas(self._local_fingerprint, self._peer.fingerprint)

    def close(self) -> None:
        """Close the connection and release the channel, session and timers."""
        self._clear_timeout()

        if self._gathering_done is not None:
            self._gathering_done.set()

        channels = [self._data_channel, self._bootstrap_channel]
        self._data_channel = None
        self._bootstrap_channel = None
        for channel in channels:
            if channel is not None:
                channel.close()

        session, self._session = self._session, None
        if session is not None:
            session.close()

        self._local_credentials = None

        if self._state is not ConnectionState.CLOSED:
            self._set_state(ConnectionState.CLOSED)

    # MARK: - Negotiation

    async def _negotiate(self) -> None:
        """Assign the role and run the matching offer/answer branch."""
        if self._local_fingerprint is None or self._peer is None or self._session is None:
            return

        comparison = compare_fingerprints(self._local_fingerprint, self._peer.fingerprint)
        self._role = Role.OFFERER if comparison > 0 else Role.ANSWERER
        logger.info(f"Assigned role: {self._role.value}")

        self._set_state(ConnectionState.CONNECTING)

        try:
            if self._role is Role.OFFERER:
                await self._negotiate_as_offerer()
            else:
                await self._negotiate_as_answerer()
        except QWBPError as e:
            self._fail(e)
            return
        except Exception as e:
            self._fail(QWBPConnectionError(f"Negotiation failed: {e}", self._state))
            return

        if self._session is not None:
            self._session.on("iceconnectionstatechange", self._on_ice_connection_state_change)
            self._session.on("connectionstatechange", self._on_connection_state_change)

    async def _negotiate_as_offerer(self) -> None:
        """Keep our gathered offer and commit the peer's reconstructed answer."""
        session = self._session

        if self._bootstrap_channel is not None:
            self._bootstrap_channel.close()
            self._bootstrap_channel = None

        channel = session.create_data_channel(DATA_CHANNEL_LABEL, ordered=True)
        self._attach_data_channel(channel)

        answer = reconstruct_sdp(self._peer.fingerprint, False, self._peer.credentials)
        await session.set_remote_description(SessionDescription(sdp=answer, type="answer"))

        await self._add_remote_candidates(self._peer.candidates)

    async def _negotiate_as_answerer(self) -> None:
        """Roll back our offer, accept the peer's offer and answer with derived credentials."""
        session = self._session

        # Back to stable on the gathering session, keeping the advertised
        # candidates
        await session.rollback()

        session.on("datachannel", self._on_remote_data_channel)

        offer = reconstruct_sdp(self._peer.fingerprint, True, self._peer.credentials)
        await session.set_remote_description(SessionDescription(sdp=offer, type="offer"))

        await self._add_remote_candidates(self._peer.candidates)

        answer = await session.create_answer()
        patched = patch_sdp_credentials(
            answer.sdp,
            self._local_credentials.ufrag,
            self._local_credentials.pwd,
        )
        await session.set_local_description(SessionDescription(sdp=patched, type="answer"))

    async def _add_remote_candidates(self, candidates: tuple[Candidate, ...]) -> None:
        """Inject peer candidates one at a time; unusable ones are skipped."""
        for candidate in candidates:
            candidate_string = build_candidate_string(candidate)
            try:
                await self._session.add_ice_candidate(candidate_string, sdp_mid="0", sdp_mline_index=0)
            except Exception as e:
                logger.warning(f"Failed to add candidate {candidate_string!r}: {e}")

    # MARK: - Gathering

    async def _wait_for_gathering(self) -> None:
        """
        Wait for gathering to complete, bounded by gathering_timeout.

        Succeeds on timeout as long as at least one candidate was seen.
        """
        session = self._session
        if session is None or session.ice_gathering_state == "complete":
            return

        try:
            await asyncio.wait_for(
                self._gathering_done.wait(),
                timeout=self.config.gathering_timeout / 1000,
            )
        except asyncio.TimeoutError:
            if self._state is ConnectionState.CLOSED:
                return

            if self._gathered_count > 0:
                logger.debug(f"Gathering timed out with {self._gathered_count} candidates, continuing")
                return

            self._set_state(ConnectionState.FAILED)
            raise QWBPConnectionError(
                "ICE gathering timeout - no candidates found",
                ConnectionState.GATHERING,
            )

    def _on_ice_candidate(self, candidate: Optional[str]) -> None:
        if candidate:
            self._gathered_count += 1
        elif self._gathering_done is not None:
            # End-of-candidates
            self._gathering_done.set()

    def _on_gathering_state_change(self) -> None:
        session = self._session
        if session is not None and session.ice_gathering_state == "complete":
            if self._gathering_done is not None:
                self._gathering_done.set()

    # MARK: - Events

    def _attach_data_channel(self, channel: DataChannel) -> None:
        self._data_channel = channel

        channel.on("open", lambda: self._on_data_channel_open(channel))
        channel.on("error", lambda error=None: self._on_data_channel_error(channel, error))
        channel.on("close", lambda: self._on_data_channel_close(channel))

        if channel.ready_state == "open":
            self._on_data_channel_open(channel)

    def _on_remote_data_channel(self, channel: DataChannel) -> None:
        if self._state.is_terminal:
            channel.close()
            return
        self._attach_data_channel(channel)

    def _on_data_channel_open(self, channel: DataChannel) -> None:
        if channel is not self._data_channel or self._state.is_terminal:
            return

        self._clear_timeout()
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Data channel open")

        for callback in list(self._data_channel_callbacks):
            callback(channel)

    def _on_data_channel_error(self, channel: DataChannel, error: Optional[Exception]) -> None:
        if channel is not self._data_channel:
            return
        self._fail(QWBPConnectionError(f"DataChannel error: {error}", self._state))

    def _on_data_channel_close(self, channel: DataChannel) -> None:
        if channel is self._data_channel and self._state is ConnectionState.CONNECTED:
            logger.info("Data channel closed by peer")
            self.close()

    def _on_ice_connection_state_change(self) -> None:
        if self._session is None:
            return

        ice_state = self._session.ice_connection_state
        if ice_state in ("failed", "disconnected"):
            self._fail(QWBPIceError(ice_state, self._state))

    def _on_connection_state_change(self) -> None:
        if self._session is None:
            return

        if self._session.connection_state == "failed":
            self._fail(QWBPConnectionError("Connection failed", self._state))

    # MARK: - State

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return

        logger.debug(f"State: {self._state.value} -> {state.value}")
        self._state = state

        for callback in list(self._state_callbacks):
            callback(state)

    def _fail(self, error: Exception) -> None:
        """Force Failed and report the error; later failures are ignored."""
        if self._state.is_terminal:
            logger.debug(f"Ignoring error in state {self._state.value}: {error}")
            return

        logger.warning(f"Connection failed: {error}")
        self._set_state(ConnectionState.FAILED)

        for callback in list(self._error_callbacks):
            callback(error)

    def _start_timeout(self) -> None:
        loop = asyncio.get_running_loop()
        self._timeout_handle = loop.call_later(
            self.config.timeout / 1000,
            self._on_session_timeout,
        )

    def _clear_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _on_session_timeout(self) -> None:
        self._timeout_handle = None

        if self._state in (ConnectionState.CONNECTED, ConnectionState.CLOSED):
            return

        self._fail(QWBPTimeoutError(self._state))
        self.close()
