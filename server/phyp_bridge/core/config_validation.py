"""Configuration validation utilities."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from .config import (
    Settings,
    settings as default_settings,
    set_config_validation_result,
    get_config_validation_result,
)


@dataclass
class ConfigIssue:
    """Represents a single configuration issue."""

    message: str
    hint: Optional[str] = None


@dataclass
class ConfigValidationResult:
    """Outcome of running configuration checks."""

    checked_at: datetime
    errors: List[ConfigIssue] = field(default_factory=list)
    warnings: List[ConfigIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


def _warn(result: ConfigValidationResult, message: str, hint: Optional[str] = None) -> None:
    result.warnings.append(ConfigIssue(message=message, hint=hint))


def _error(result: ConfigValidationResult, message: str, hint: Optional[str] = None) -> None:
    result.errors.append(ConfigIssue(message=message, hint=hint))


def run_config_checks(
    settings: Optional[Settings] = None, force: bool = False
) -> ConfigValidationResult:
    """Validate configuration combinations and cache the result."""

    if not force:
        cached = get_config_validation_result()
        if cached is not None:
            return cached

    settings = settings or default_settings
    result = ConfigValidationResult(checked_at=datetime.now(timezone.utc))

    # Missing key pair only means every connection will prompt for a password.
    if not settings.has_key_pair():
        _warn(
            result,
            f"SSH key pair not found at {settings.get_private_key_path()} / {settings.get_public_key_path()}.",
            "Connections will fall back to password authentication through the credential callback.",
        )

    if "{username}" not in settings.identity_table_remote_path:
        _error(
            result,
            "PHYP_IDENTITY_TABLE_REMOTE_PATH does not contain a {username} placeholder.",
            "Use a per-user path such as /home/{username}/libvirt_uuid_table.",
        )

    if settings.exec_read_chunk_size <= 0:
        _error(
            result,
            "PHYP_EXEC_READ_CHUNK_SIZE must be a positive number of bytes.",
        )

    if settings.transfer_chunk_size <= 0:
        _error(
            result,
            "PHYP_TRANSFER_CHUNK_SIZE must be a positive number of bytes.",
        )

    if not 0 <= settings.identity_table_file_mode <= 0o777:
        _error(
            result,
            "PHYP_IDENTITY_TABLE_FILE_MODE must be a permission mask between 0 and 0o777.",
        )

    known_hosts = settings.get_known_hosts_path()
    if settings.ssh_strict_host_key_checking:
        if known_hosts is None:
            _error(
                result,
                "PHYP_SSH_STRICT_HOST_KEY_CHECKING is enabled but PHYP_SSH_KNOWN_HOSTS_PATH is not set.",
                "Point PHYP_SSH_KNOWN_HOSTS_PATH at a known_hosts file containing the management console key.",
            )
        elif not known_hosts.is_file():
            _error(
                result,
                f"Known hosts file {known_hosts} does not exist.",
            )
    elif known_hosts is None:
        _warn(
            result,
            "Host keys are not verified (PHYP_SSH_KNOWN_HOSTS_PATH is not set).",
            "Configure a known_hosts file to detect man-in-the-middle attacks.",
        )

    set_config_validation_result(result)
    return result
