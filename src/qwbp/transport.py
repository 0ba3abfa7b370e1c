"""
Transport interfaces for driving a WebRTC peer connection.

This module provides abstract base classes for the peer-connection
capabilities QWBP needs. Implementations can use any WebRTC stack; see
``qwbp.aiortc_transport`` for the aiortc-backed one.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union


@dataclass
class IceServer:
    """A STUN (or pre-shared TURN) server."""

    urls: str
    """Server URL, e.g. "stun:stun.l.google.com:19302"."""

    username: Optional[str] = None
    """TURN username (never carried in the QWBP payload)."""

    credential: Optional[str] = None
    """TURN credential (never carried in the QWBP payload)."""


@dataclass
class SessionDescription:
    """An SDP blob with its type ("offer", "answer")."""

    sdp: str
    """SDP text."""

    type: str
    """Description type."""


@dataclass
class Certificate:
    """An ephemeral DTLS certificate handle."""

    fingerprint: bytes
    """SHA-256 fingerprint of the certificate (32 bytes)."""

    handle: Any = None
    """The transport's native certificate object."""


class DataChannel(ABC):
    """Abstract bidirectional, ordered data channel.

    Events: "open", "close", "error" (exception), "message" (data).
    """

    @property
    @abstractmethod
    def label(self) -> str:
        """Channel label."""
        pass

    @property
    @abstractmethod
    def ready_state(self) -> str:
        """One of "connecting", "open", "closing", "closed"."""
        pass

    @abstractmethod
    def on(self, event: str, handler: Callable[..., None]) -> None:
        """Register a handler for a channel event."""
        pass

    @abstractmethod
    def send(self, data: Union[str, bytes]) -> None:
        """Send a message."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the channel."""
        pass


class TransportSession(ABC):
    """Abstract peer connection.

    Events:
        "icecandidate": candidate string, or None at end of gathering
        "icegatheringstatechange": no arguments
        "iceconnectionstatechange": no arguments
        "connectionstatechange": no arguments
        "datachannel": the remote-created DataChannel
    """

    @property
    @abstractmethod
    def local_description(self) -> Optional[SessionDescription]:
        """The committed local description, including gathered candidates."""
        pass

    @property
    @abstractmethod
    def ice_gathering_state(self) -> str:
        """One of "new", "gathering", "complete"."""
        pass

    @property
    @abstractmethod
    def ice_connection_state(self) -> str:
        """ICE connection state ("new", "checking", "connected", "failed", ...)."""
        pass

    @property
    @abstractmethod
    def connection_state(self) -> str:
        """Overall connection state ("new", "connecting", "connected", "failed", ...)."""
        pass

    @abstractmethod
    def on(self, event: str, handler: Callable[..., None]) -> None:
        """Register a handler for a session event."""
        pass

    @abstractmethod
    def create_data_channel(self, label: str, ordered: bool = True) -> DataChannel:
        """Create a data channel."""
        pass

    @abstractmethod
    async def create_offer(self) -> SessionDescription:
        """Create an offer."""
        pass

    @abstractmethod
    async def create_answer(self) -> SessionDescription:
        """Create an answer to the committed remote offer."""
        pass

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> None:
        """Commit a local description; starts candidate gathering for offers."""
        pass

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:
        """Commit a remote description."""
        pass

    @abstractmethod
    async def rollback(self) -> None:
        """Return signaling to "stable" without discarding gathered candidates."""
        pass

    @abstractmethod
    async def add_ice_candidate(
        self,
        candidate: str,
        sdp_mid: str = "0",
        sdp_mline_index: int = 0,
    ) -> None:
        """Inject a single remote candidate string."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the session. Must be safe to call more than once."""
        pass


class Transport(ABC):
    """Abstract factory for certificates and sessions."""

    @abstractmethod
    async def generate_certificate(self) -> Certificate:
        """Generate an ephemeral DTLS certificate."""
        pass

    @abstractmethod
    def create_session(
        self,
        ice_servers: list[IceServer],
        certificate: Certificate,
    ) -> TransportSession:
        """Create a session that will use the given certificate."""
        pass
