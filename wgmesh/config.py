"""
Configuration management for wgmesh.

Handles:
- Node identity storage location
- API server settings
- Gossip, anti-entropy and retention tuning
- WireGuard interface selection
"""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Optional
import logging

from .mesh.host import DEFAULT_API_PORT

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_DATA_DIR = Path.home() / ".wgmesh"


@dataclass
class ServerConfig:
    """Configuration for the API server."""
    host: str = "0.0.0.0"
    port: int = DEFAULT_API_PORT

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ServerConfig":
        return cls(**data)


@dataclass
class GossipConfig:
    """Event log bounds and background task cadence."""
    recent_capacity: int = 1000
    seen_retention_seconds: float = 24 * 3600
    max_seen: int = 100_000
    propagate_timeout: float = 5.0    # Per-peer push timeout
    peer_timeout: float = 5.0         # Per-peer timeout for pulls and pings
    anti_entropy_interval: float = 30.0
    ping_interval: float = 15.0
    prune_interval: float = 60.0

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict) -> "GossipConfig":
        # Filter to only known fields to handle config evolution
        known_fields = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known_fields})


@dataclass
class Config:
    """
    Main wgmesh configuration.

    Stored at ~/.wgmesh/config.json
    """
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)

    server: ServerConfig = field(default_factory=ServerConfig)
    gossip: GossipConfig = field(default_factory=GossipConfig)

    # None runs the daemon without touching any interface
    wireguard_interface: Optional[str] = None

    # Bootstrap hosts to join on startup (host:port or URL)
    bootstrap: List[str] = field(default_factory=list)

    mdns_enabled: bool = True

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def identity_path(self) -> Path:
        return self.data_dir / "identity.json"

    @property
    def local_url(self) -> str:
        """URL for reaching the local daemon's API."""
        host = self.server.host
        if host in ("0.0.0.0", "::", ""):
            host = "127.0.0.1"
        return f"http://{host}:{self.server.port}"

    def ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def to_dict(self) -> dict:
        return {
            "server": self.server.to_dict(),
            "gossip": self.gossip.to_dict(),
            "wireguard_interface": self.wireguard_interface,
            "bootstrap": self.bootstrap,
            "mdns_enabled": self.mdns_enabled,
        }

    def save(self) -> None:
        """Save configuration to disk."""
        self.ensure_data_dir()

        with open(self.config_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.debug(f"Configuration saved to {self.config_path}")

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "Config":
        """Load configuration from disk."""
        data_dir = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
        config_path = data_dir / "config.json"

        if not config_path.exists():
            return cls(data_dir=data_dir)

        with open(config_path, 'r') as f:
            data = json.load(f)

        config = cls(
            data_dir=data_dir,
            wireguard_interface=data.get("wireguard_interface"),
            bootstrap=data.get("bootstrap", []),
            mdns_enabled=data.get("mdns_enabled", True),
        )

        if "server" in data:
            config.server = ServerConfig.from_dict(data["server"])

        if "gossip" in data:
            config.gossip = GossipConfig.from_dict(data["gossip"])

        return config

    @classmethod
    def exists(cls, data_dir: Optional[Path] = None) -> bool:
        """Check if configuration exists."""
        data_dir = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
        return (data_dir / "config.json").exists()


# Global config instance
_config: Optional[Config] = None


def get_config(data_dir: Optional[Path] = None) -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load(data_dir)
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
