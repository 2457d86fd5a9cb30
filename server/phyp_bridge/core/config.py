"""Configuration management using Pydantic settings."""

from pathlib import Path
from typing import Optional, TYPE_CHECKING

from pydantic_settings import BaseSettings


# Name of the identity table cache file kept beneath the per-connection cache
# directory. The remote replica uses the identity_table_remote_path template.
IDENTITY_TABLE_FILENAME = "uuid_table"
PENDING_PUSH_SUFFIX = ".pending"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application settings
    app_name: str = "phyp-bridge"
    debug: bool = False

    # SSH connection settings
    ssh_port: int = 22
    ssh_connect_timeout: float = 30.0  # per-address TCP connect timeout in seconds
    ssh_handshake_timeout: float = 30.0  # key exchange timeout in seconds

    # SSH authentication settings
    ssh_private_key_path: str = "~/.ssh/id_rsa"
    ssh_public_key_path: str = "~/.ssh/id_rsa.pub"
    ssh_known_hosts_path: Optional[str] = None
    ssh_strict_host_key_checking: bool = False

    # Channel I/O settings
    exec_read_chunk_size: int = 16384  # bytes drained per command channel read
    transfer_chunk_size: int = 1024  # bytes per SCP read/write

    # Identity table settings
    identity_table_cache_dir: str = "~/.cache/phyp-bridge"
    identity_table_remote_path: str = "/home/{username}/libvirt_uuid_table"
    identity_table_file_mode: int = 0o644

    class Config:
        env_prefix = "PHYP_"
        env_file = ".env"
        case_sensitive = False

    def get_private_key_path(self) -> Path:
        """Return the private key path with the user directory expanded."""
        return Path(self.ssh_private_key_path).expanduser()

    def get_public_key_path(self) -> Path:
        """Return the public key path with the user directory expanded."""
        return Path(self.ssh_public_key_path).expanduser()

    def get_known_hosts_path(self) -> Optional[Path]:
        if not self.ssh_known_hosts_path:
            return None
        return Path(self.ssh_known_hosts_path).expanduser()

    def get_remote_table_path(self, username: str) -> str:
        """Render the remote identity table location for a user."""
        return self.identity_table_remote_path.format(username=username)

    def get_local_table_path(self, hostname: str, username: str) -> Path:
        """Return the local identity table cache file for a connection.

        Each host/user pair gets its own file so that connections opened by
        the same process never share a cache.
        """
        base = Path(self.identity_table_cache_dir).expanduser()
        return base / hostname / username / IDENTITY_TABLE_FILENAME

    def has_key_pair(self) -> bool:
        """Check if both halves of the configured key pair are present."""
        return self.get_private_key_path().is_file() and self.get_public_key_path().is_file()


settings = Settings()


if TYPE_CHECKING:  # pragma: no cover - only for type hints
    from .config_validation import ConfigValidationResult

# Cache of the configuration validation result so it can be reused across modules
_config_validation_result: Optional["ConfigValidationResult"] = None


def set_config_validation_result(result: Optional["ConfigValidationResult"]) -> None:
    """Persist the configuration validation result for reuse."""

    global _config_validation_result
    _config_validation_result = result


def get_config_validation_result() -> Optional["ConfigValidationResult"]:
    """Return the cached configuration validation result, if available."""

    return _config_validation_result
