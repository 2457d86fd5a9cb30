"""Connection to a POWER hypervisor management console."""
from __future__ import annotations

import logging
import uuid
from typing import Optional

from ..core.config import Settings, settings as default_settings
from ..core.config_validation import run_config_checks
from ..core.models import ConnectionURI, SyncOutcome, SystemType
from .command_executor import CommandExecutor
from .file_transfer import FileTransfer
from .identity_table import IdentityTableStore
from .inventory import PartitionInventory, detect_system_type
from .readiness import ReadinessWaiter
from .ssh_session import CredentialCallback, SSHSession, open_session
from .table_sync import TableSynchronizer

logger = logging.getLogger(__name__)


class PhypConnection:
    """Owns the SSH session and identity table for one management console."""

    def __init__(
        self,
        uri: ConnectionURI,
        session: SSHSession,
        executor: CommandExecutor,
        transfer: FileTransfer,
        synchronizer: TableSynchronizer,
        system_type: SystemType,
    ) -> None:
        self.uri = uri
        self.session = session
        self.executor = executor
        self.transfer = transfer
        self.synchronizer = synchronizer
        self.system_type = system_type
        self.vios_id: Optional[int] = None
        self.sync_state: SyncOutcome = SyncOutcome.SYNCED
        self._closed = False

    @classmethod
    def open(
        cls,
        uri: str,
        auth_callback: Optional[CredentialCallback] = None,
        settings: Optional[Settings] = None,
    ) -> "PhypConnection":
        """Connect, authenticate and load the identity table.

        Any failure closes whatever was opened and re-raises.
        """

        settings = settings or default_settings
        target = ConnectionURI.parse(uri)

        config_result = run_config_checks(settings)
        for issue in config_result.errors:
            logger.error("Configuration error: %s", issue.message)
            if issue.hint:
                logger.error("Hint: %s", issue.hint)
        for issue in config_result.warnings:
            logger.warning("Configuration warning: %s", issue.message)
            if issue.hint:
                logger.warning("Hint: %s", issue.hint)

        session = open_session(
            target.hostname,
            username=target.username,
            auth_callback=auth_callback,
            port=target.port,
            settings=settings,
        )
        try:
            waiter = ReadinessWaiter()
            executor = CommandExecutor(session, waiter=waiter, settings=settings)
            transfer = FileTransfer(session, waiter=waiter, settings=settings)

            system_type = detect_system_type(executor)
            inventory = PartitionInventory(executor, system_type, target.managed_system)

            store = IdentityTableStore(
                local_path=settings.get_local_table_path(target.hostname, session.username),
                remote_path=settings.get_remote_table_path(session.username),
                file_mode=settings.identity_table_file_mode,
            )
            synchronizer = TableSynchronizer(transfer, store, inventory)

            connection = cls(target, session, executor, transfer, synchronizer, system_type)
            connection.sync_state = synchronizer.init()

            if system_type == SystemType.HMC:
                connection.vios_id = inventory.vios_partition_id()
        except Exception:
            logger.error("Opening connection to %s failed; disconnecting", target.hostname)
            session.close()
            raise

        logger.info(
            "Connected to %s (%s, managed system %s, identity table %s)",
            target.hostname,
            system_type.value.upper(),
            target.managed_system or "<none>",
            connection.sync_state.value,
        )
        return connection

    def close(self) -> None:
        """Free the identity table and disconnect. Safe to call twice."""

        if self._closed:
            return
        self._closed = True
        self.synchronizer.teardown()
        self.session.close()
        logger.info("Closed connection to %s", self.uri.hostname)

    def __enter__(self) -> "PhypConnection":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def is_alive(self) -> bool:
        return not self._closed and self.session.is_active()

    def is_encrypted(self) -> bool:
        # Always tunnelled through SSH
        return True

    def is_secure(self) -> bool:
        return True

    # Identity helpers -------------------------------------------------
    def lookup_uuid(self, numeric_id: int) -> Optional[uuid.UUID]:
        return self.synchronizer.lookup(numeric_id)

    def add_identity(self, unique_id: uuid.UUID, numeric_id: int) -> SyncOutcome:
        return self.synchronizer.add(unique_id, numeric_id)

    def remove_identity(self, numeric_id: int) -> SyncOutcome:
        return self.synchronizer.remove(numeric_id)


__all__ = ["PhypConnection"]
