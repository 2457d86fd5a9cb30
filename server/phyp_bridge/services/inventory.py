"""Partition enumeration on HMC and IVM management consoles."""
from __future__ import annotations

import logging
from typing import List, Optional, Protocol

from ..core.errors import ConsistencyError, ProtocolFailure, RemoteCommandError
from ..core.models import SystemType
from .command_executor import CommandExecutor

logger = logging.getLogger(__name__)


class PartitionEnumerator(Protocol):
    """Source of the remote partition count and id listing."""

    def count(self) -> int:
        ...

    def list_ids(self) -> List[int]:
        ...


def detect_system_type(executor: CommandExecutor) -> SystemType:
    """Identify the console: ``lshmc`` only exists on an HMC."""

    result = executor.execute("lshmc -V")
    if not result.status_available:
        raise ProtocolFailure("Unable to determine management console type")
    system_type = SystemType.HMC if result.exit_status == 0 else SystemType.IVM
    logger.info("Management console %s identified as %s", executor.session.hostname, system_type.value.upper())
    return system_type


class PartitionInventory:
    """Enumerate logical partitions with ``lssyscfg``."""

    def __init__(
        self,
        executor: CommandExecutor,
        system_type: SystemType,
        managed_system: Optional[str] = None,
    ) -> None:
        self.executor = executor
        self.system_type = system_type
        self.managed_system = managed_system

    def _lssyscfg(self) -> str:
        command = "lssyscfg -r lpar"
        if self.system_type == SystemType.HMC and self.managed_system:
            command += f" -m {self.managed_system}"
        return command

    def count(self) -> int:
        """Return the number of partitions in any state."""
        return self.executor.execute_int(
            f"{self._lssyscfg()} -F lpar_id,state |grep -c '^[0-9][0-9]*'"
        )

    def list_ids(self) -> List[int]:
        """Return partition ids in listing order."""

        command = f"{self._lssyscfg()} -F lpar_id,state | sed -e 's/,.*$//'"
        output, exit_status = self.executor.execute_text(command)
        if exit_status != 0:
            raise RemoteCommandError(command, exit_status, output)

        ids: List[int] = []
        for line in output.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                ids.append(int(line))
            except ValueError as exc:
                logger.error("Cannot parse number from '%s'", line)
                raise ConsistencyError(f"Cannot parse partition id from '{line}'") from exc
        return ids

    def vios_partition_id(self) -> int:
        """Return the id of the Virtual I/O Server partition."""

        command = (
            f"{self._lssyscfg()} -F lpar_id,lpar_env"
            "|sed -n '/vioserver/ {\n s/,.*$//\n p\n}'"
        )
        return self.executor.execute_int(command)


__all__ = [
    "PartitionEnumerator",
    "PartitionInventory",
    "detect_system_type",
]
