"""
aiortc implementation of the QWBP transport interfaces.

aiortc has no API for choosing ICE credentials, supplying a certificate to a
new peer connection, or rolling back a local offer, so this adapter reaches
into the peer connection's private state for those three operations.
"""

import asyncio
import logging
import re
from typing import Any, Callable, Optional, Union

from aiortc import (
    RTCCertificate,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from .credentials import extract_fingerprint_from_sdp
from .transport import (
    Certificate,
    DataChannel,
    IceServer,
    SessionDescription,
    Transport,
    TransportSession,
)

logger = logging.getLogger(__name__)


_UFRAG_LINE = re.compile(r"a=ice-ufrag:(\S+)")
_PWD_LINE = re.compile(r"a=ice-pwd:(\S+)")


class AiortcDataChannel(DataChannel):
    """Wraps an aiortc RTCDataChannel."""

    def __init__(self, channel: Any) -> None:
        self._channel = channel

    @property
    def label(self) -> str:
        return self._channel.label

    @property
    def ready_state(self) -> str:
        return self._channel.readyState

    def on(self, event: str, handler: Callable[..., None]) -> None:
        self._channel.on(event, handler)

    def send(self, data: Union[str, bytes]) -> None:
        self._channel.send(data)

    def close(self) -> None:
        self._channel.close()


class AiortcSession(TransportSession):
    """Wraps an aiortc RTCPeerConnection."""

    def __init__(self, pc: RTCPeerConnection) -> None:
        self._pc = pc
        self._closing: Optional[asyncio.Future] = None

    @property
    def local_description(self) -> Optional[SessionDescription]:
        description = self._pc.localDescription
        if description is None:
            return None
        return SessionDescription(sdp=description.sdp, type=description.type)

    @property
    def ice_gathering_state(self) -> str:
        return self._pc.iceGatheringState

    @property
    def ice_connection_state(self) -> str:
        return self._pc.iceConnectionState

    @property
    def connection_state(self) -> str:
        return self._pc.connectionState

    def on(self, event: str, handler: Callable[..., None]) -> None:
        if event == "datachannel":
            self._pc.on("datachannel", lambda channel: handler(AiortcDataChannel(channel)))
        elif event == "icecandidate":
            # aiortc gathers inside setLocalDescription and never trickles
            return
        else:
            self._pc.on(event, handler)

    def create_data_channel(self, label: str, ordered: bool = True) -> DataChannel:
        return AiortcDataChannel(self._pc.createDataChannel(label, ordered=ordered))

    async def create_offer(self) -> SessionDescription:
        offer = await self._pc.createOffer()
        return SessionDescription(sdp=offer.sdp, type=offer.type)

    async def create_answer(self) -> SessionDescription:
        answer = await self._pc.createAnswer()
        return SessionDescription(sdp=answer.sdp, type=answer.type)

    async def set_local_description(self, description: SessionDescription) -> None:
        self._apply_local_credentials(description.sdp)
        await self._pc.setLocalDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )

    async def rollback(self) -> None:
        pc = self._pc
        pc._RTCPeerConnection__pendingLocalDescription = None
        pc._RTCPeerConnection__currentLocalDescription = None
        pc._RTCPeerConnection__setSignalingState("stable")

        ice_transport = self._ice_transport()
        if ice_transport is not None:
            ice_transport._connection.ice_controlling = False
            ice_transport._role_set = False

    async def add_ice_candidate(
        self,
        candidate: str,
        sdp_mid: str = "0",
        sdp_mline_index: int = 0,
    ) -> None:
        if candidate.startswith("candidate:"):
            candidate = candidate[len("candidate:"):]

        ice_candidate = candidate_from_sdp(candidate)
        ice_candidate.sdpMid = sdp_mid
        ice_candidate.sdpMLineIndex = sdp_mline_index
        await self._pc.addIceCandidate(ice_candidate)

    def close(self) -> None:
        """
        Schedule the peer connection close on the running loop.

        The session's sockets belong to the loop it was created on, so close()
        must be called while that loop is running. Without one, nothing is
        released and a warning is logged.
        """
        if self._closing is not None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("close() called without a running event loop; peer connection left open")
            return

        self._closing = loop.create_task(self._pc.close())
        self._closing.add_done_callback(self._on_closed)

    @property
    def closing(self) -> Optional[asyncio.Future]:
        """The pending close task, once close() has been called."""
        return self._closing

    @staticmethod
    def _on_closed(task: asyncio.Future) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Peer connection close failed: {error}")

    def _ice_transport(self) -> Optional[Any]:
        sctp = self._pc.sctp
        if sctp is None:
            return None
        return sctp.transport.transport

    def _apply_local_credentials(self, sdp: str) -> None:
        """Make the ICE agent use the ufrag/pwd written into the SDP."""
        ufrag = _UFRAG_LINE.search(sdp)
        pwd = _PWD_LINE.search(sdp)
        ice_transport = self._ice_transport()
        if ufrag is None or pwd is None or ice_transport is None:
            return

        # aioice exposes these as read-only properties
        connection = ice_transport.iceGatherer._connection
        connection._local_username = ufrag.group(1)
        connection._local_password = pwd.group(1)
        logger.debug(f"Applied local ICE credentials ufrag={ufrag.group(1)}")


class AiortcTransport(Transport):
    """Transport backed by aiortc."""

    async def generate_certificate(self) -> Certificate:
        handle = RTCCertificate.generateCertificate()

        for fingerprint in handle.getFingerprints():
            if fingerprint.algorithm == "sha-256":
                value = extract_fingerprint_from_sdp(f"a=fingerprint:sha-256 {fingerprint.value}")
                return Certificate(fingerprint=value, handle=handle)

        raise ValueError("Certificate has no sha-256 fingerprint")

    def create_session(
        self,
        ice_servers: list[IceServer],
        certificate: Certificate,
    ) -> TransportSession:
        configuration = RTCConfiguration(
            iceServers=[
                RTCIceServer(urls=server.urls, username=server.username, credential=server.credential)
                for server in ice_servers
            ]
        )
        pc = RTCPeerConnection(configuration=configuration)

        # Must be set before the first data channel creates the DTLS transport
        if certificate.handle is not None:
            pc._RTCPeerConnection__certificates = [certificate.handle]

        return AiortcSession(pc)
