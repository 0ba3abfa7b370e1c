"""Configuration for QWBP connections."""

from dataclasses import dataclass, field

from .transport import IceServer
from .types import (
    DEFAULT_GATHERING_TIMEOUT,
    DEFAULT_MAX_CANDIDATES,
    DEFAULT_STUN_URLS,
    DEFAULT_TIMEOUT,
)


def _default_ice_servers() -> list[IceServer]:
    return [IceServer(urls=url) for url in DEFAULT_STUN_URLS]


@dataclass
class QWBPConfig:
    """Configuration for a QWBPConnection.

    TURN servers may be listed but must be shared out of band; the payload
    only ever carries host and server-reflexive candidates.
    """

    ice_servers: list[IceServer] = field(default_factory=_default_ice_servers)
    """STUN/TURN servers used for gathering."""

    max_candidates: int = DEFAULT_MAX_CANDIDATES
    """Maximum number of candidates written to the payload."""

    timeout: int = DEFAULT_TIMEOUT
    """Session timeout in milliseconds, counted from entering Displaying."""

    gathering_timeout: int = DEFAULT_GATHERING_TIMEOUT
    """Bound on the ICE gathering wait in milliseconds."""

    def __post_init__(self) -> None:
        if self.max_candidates < 1:
            raise ValueError(f"max_candidates must be at least 1, got {self.max_candidates}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.gathering_timeout <= 0:
            raise ValueError(f"gathering_timeout must be positive, got {self.gathering_timeout}")

    @classmethod
    def local_only(cls) -> "QWBPConfig":
        """Creates a configuration without STUN servers (host candidates only)."""
        return cls(ice_servers=[])

    def with_ice_servers(self, ice_servers: list[IceServer]) -> "QWBPConfig":
        """Returns a copy using the given ICE servers."""
        return QWBPConfig(
            ice_servers=list(ice_servers),
            max_candidates=self.max_candidates,
            timeout=self.timeout,
            gathering_timeout=self.gathering_timeout,
        )
