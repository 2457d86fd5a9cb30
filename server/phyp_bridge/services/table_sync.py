"""Keep the identity table consistent between local cache and remote replica."""
from __future__ import annotations

import logging
import uuid
from typing import Callable, List, Optional

from ..core.errors import ConsistencyError, LocalIOError, PhypError, RemoteFileUnavailableError
from ..core.models import SyncOutcome
from .file_transfer import FileTransfer
from .identity_table import NIL_UUID, IdentityRecord, IdentityTable, IdentityTableStore
from .inventory import PartitionEnumerator

logger = logging.getLogger(__name__)


class TableSynchronizer:
    """Bootstrap, mutate and replicate the identity table of one connection.

    Every mutation is persisted to the local cache and then pushed to the
    remote replica. A failed push leaves the local cache authoritative and
    marked pending; the next :meth:`init` re-pushes it before trusting the
    remote copy.
    """

    def __init__(
        self,
        transfer: FileTransfer,
        store: IdentityTableStore,
        enumerator: PartitionEnumerator,
        table: Optional[IdentityTable] = None,
        uuid_factory: Callable[[], uuid.UUID] = uuid.uuid4,
    ) -> None:
        self.transfer = transfer
        self.store = store
        self.enumerator = enumerator
        self.table = table if table is not None else IdentityTable()
        self.uuid_factory = uuid_factory

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------
    def init(self) -> SyncOutcome:
        """Populate the table from the remote replica, or create it.

        Raises ConsistencyError when the partition count and listing
        disagree; the table is left uninitialized on any failure.
        """

        self.table.clear()

        count = self.enumerator.count()
        ids = self.enumerator.list_ids()
        if len(ids) != count:
            logger.error(
                "Unable to determine number of domains: count reported %d, listing returned %d",
                count,
                len(ids),
            )
            raise ConsistencyError(
                f"Partition count ({count}) does not match partition listing ({len(ids)})"
            )

        try:
            if self.store.has_pending_push():
                return self._recover_pending()

            if count == 0:
                logger.info("No partitions reported; starting with an empty identity table")
                self.table.replace([])
                return SyncOutcome.SYNCED

            try:
                self.transfer.pull(self.store.remote_path, self.store.local_path)
            except RemoteFileUnavailableError as exc:
                logger.info("No identity table on remote host (%s); bootstrapping", exc.reason)
                return self._bootstrap(ids)
            except PhypError as exc:
                logger.warning("Unable to pull identity table %s: %s; bootstrapping", self.store.remote_path, exc)
                return self._bootstrap(ids)

            records = self.store.read()
            self.table.replace(records)
            logger.info(
                "Loaded %d identity record(s) (%d live) from %s",
                len(records),
                len(self.table.live_records()),
                self.store.remote_path,
            )
            return SyncOutcome.SYNCED
        except PhypError:
            self.table.clear()
            raise

    def _bootstrap(self, ids: List[int]) -> SyncOutcome:
        records = []
        for numeric_id in ids:
            try:
                unique_id = self.uuid_factory()
            except OSError as exc:
                logger.warning("Unable to generate UUID for domain %d: %s", numeric_id, exc)
                unique_id = NIL_UUID
            records.append(IdentityRecord(numeric_id=numeric_id, unique_id=unique_id))

        self.store.write(records)
        self.table.replace(records)
        logger.info("Created identity table with %d record(s)", len(records))
        return self._push()

    def _recover_pending(self) -> SyncOutcome:
        records = self.store.read()
        self.table.replace(records)
        logger.warning(
            "Local identity table %s was never pushed; treating it as authoritative",
            self.store.local_path,
        )
        return self._push()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def _push(self) -> SyncOutcome:
        try:
            self.transfer.push(self.store.local_path, self.store.remote_path)
        except PhypError as exc:
            logger.error(
                "Unable to push identity table to %s: %s; local copy kept pending",
                self.store.remote_path,
                exc,
            )
            try:
                self.store.mark_pending_push()
            except LocalIOError:
                # Without the marker the next init would trust the stale remote copy
                return SyncOutcome.FAILED
            return SyncOutcome.LOCAL_ONLY

        self.store.clear_pending_push()
        return SyncOutcome.SYNCED

    def _commit(self, previous: List[IdentityRecord]) -> SyncOutcome:
        try:
            self.store.write(self.table.records)
        except LocalIOError as exc:
            logger.error("Identity table change not persisted: %s", exc)
            self.table.records = previous
            return SyncOutcome.FAILED

        outcome = self._push()
        if outcome == SyncOutcome.FAILED:
            logger.error("Identity table change could be neither pushed nor marked pending; discarding it")
            self.table.records = previous
        return outcome

    def _require_initialized(self) -> None:
        if not self.table.initialized:
            raise PhypError("Identity table is not initialized")

    def add(self, unique_id: uuid.UUID, numeric_id: int) -> SyncOutcome:
        """Record a new live partition identity and replicate the table."""

        self._require_initialized()
        previous = self.table.snapshot()
        self.table.add_live(numeric_id, unique_id)
        logger.debug("Added identity %s for partition %d", unique_id, numeric_id)
        return self._commit(previous)

    def remove(self, numeric_id: int) -> SyncOutcome:
        """Tombstone every record for ``numeric_id`` and replicate the table."""

        self._require_initialized()
        previous = self.table.snapshot()
        removed = self.table.mark_dead(numeric_id)
        if not removed:
            logger.debug("No live identity recorded for partition %d", numeric_id)
        return self._commit(previous)

    def lookup(self, numeric_id: int) -> Optional[uuid.UUID]:
        return self.table.lookup(numeric_id)

    def teardown(self) -> None:
        """Release in-memory records; never touches local or remote storage."""
        self.table.clear()


__all__ = ["TableSynchronizer"]
