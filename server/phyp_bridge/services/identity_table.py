"""Identity records mapping partition ids to stable UUIDs.

The table image is a flat, headerless sequence of 20-byte records: the
partition id as a little-endian signed 32-bit integer followed by the 16 raw
UUID bytes. Tombstoned records are stored with id -1 and the nil UUID. The
format carries no header, version or checksum.
"""
from __future__ import annotations

import logging
import os
import struct
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from ..core.config import PENDING_PUSH_SUFFIX
from ..core.errors import LocalIOError, TableFormatError

logger = logging.getLogger(__name__)

DEAD_NUMERIC_ID = -1
NIL_UUID = uuid.UUID(int=0)

_RECORD = struct.Struct("<i16s")
RECORD_SIZE = _RECORD.size


@dataclass
class IdentityRecord:
    """One partition id to UUID mapping."""

    numeric_id: int
    unique_id: uuid.UUID
    live: bool = True

    def kill(self) -> None:
        self.numeric_id = DEAD_NUMERIC_ID
        self.unique_id = NIL_UUID
        self.live = False


def encode_table(records: Iterable[IdentityRecord]) -> bytes:
    """Serialize records in table order."""
    return b"".join(_RECORD.pack(record.numeric_id, record.unique_id.bytes) for record in records)


def decode_table(data: bytes) -> List[IdentityRecord]:
    """Rebuild records from a table image."""

    if len(data) % RECORD_SIZE:
        raise TableFormatError(
            f"Identity table image is {len(data)} bytes, not a multiple of {RECORD_SIZE}"
        )

    records = []
    for numeric_id, raw_uuid in _RECORD.iter_unpack(data):
        records.append(
            IdentityRecord(
                numeric_id=numeric_id,
                unique_id=uuid.UUID(bytes=raw_uuid),
                live=numeric_id != DEAD_NUMERIC_ID,
            )
        )
    return records


class IdentityTable:
    """Ordered, non-compacting collection of identity records."""

    def __init__(self) -> None:
        self.records: List[IdentityRecord] = []
        self.initialized = False

    def __len__(self) -> int:
        return len(self.records)

    def live_records(self) -> List[IdentityRecord]:
        return [record for record in self.records if record.live]

    def lookup(self, numeric_id: int) -> Optional[uuid.UUID]:
        """Return the UUID of the live record for ``numeric_id``, if any."""
        for record in self.records:
            if record.live and record.numeric_id == numeric_id:
                return record.unique_id
        return None

    def add_live(self, numeric_id: int, unique_id: uuid.UUID) -> IdentityRecord:
        """Append a live record; an older live record for the id is tombstoned."""
        replaced = self.mark_dead(numeric_id)
        if replaced:
            logger.warning(
                "Partition id %s already had a live identity; tombstoned %d stale record(s)",
                numeric_id,
                replaced,
            )
        record = IdentityRecord(numeric_id=numeric_id, unique_id=unique_id)
        self.records.append(record)
        return record

    def mark_dead(self, numeric_id: int) -> int:
        """Tombstone every live record for ``numeric_id``; return how many."""
        count = 0
        for record in self.records:
            if record.live and record.numeric_id == numeric_id:
                record.kill()
                count += 1
        return count

    def replace(self, records: List[IdentityRecord]) -> None:
        self.records = list(records)
        self.initialized = True

    def snapshot(self) -> List[IdentityRecord]:
        """Return independent copies of the current records."""
        return [IdentityRecord(r.numeric_id, r.unique_id, r.live) for r in self.records]

    def clear(self) -> None:
        self.records = []
        self.initialized = False


class IdentityTableStore:
    """Local cache file and remote replica location for one connection."""

    def __init__(self, local_path: Path, remote_path: str, file_mode: int = 0o644) -> None:
        self.local_path = Path(local_path)
        self.remote_path = remote_path
        self.file_mode = file_mode

    @property
    def pending_marker(self) -> Path:
        return self.local_path.with_name(self.local_path.name + PENDING_PUSH_SUFFIX)

    def write(self, records: Iterable[IdentityRecord]) -> None:
        """Atomically replace the local cache with ``records``."""

        payload = encode_table(records)
        directory = self.local_path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.local_path.name}.", dir=directory)
        except OSError as exc:
            logger.error("Unable to create identity table cache in %s: %s", directory, exc)
            raise LocalIOError(f"Unable to create {self.local_path}: {exc}") from exc

        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.chmod(tmp_name, self.file_mode)
            os.replace(tmp_name, self.local_path)
        except OSError as exc:
            logger.error("Unable to write identity table %s: %s", self.local_path, exc)
            Path(tmp_name).unlink(missing_ok=True)
            raise LocalIOError(f"Unable to write {self.local_path}: {exc}") from exc

        logger.debug("Wrote %d bytes to identity table %s", len(payload), self.local_path)

    def read(self) -> List[IdentityRecord]:
        try:
            data = self.local_path.read_bytes()
        except OSError as exc:
            logger.error("Unable to read identity table %s: %s", self.local_path, exc)
            raise LocalIOError(f"Unable to read {self.local_path}: {exc}") from exc
        return decode_table(data)

    def has_pending_push(self) -> bool:
        return self.pending_marker.exists() and self.local_path.exists()

    def mark_pending_push(self) -> None:
        """Record that the local cache holds changes the remote replica lacks.

        Raises LocalIOError when the marker cannot be created.
        """

        try:
            self.pending_marker.touch()
        except OSError as exc:
            logger.error("Unable to record pending push marker %s: %s", self.pending_marker, exc)
            raise LocalIOError(f"Unable to create {self.pending_marker}: {exc}") from exc

    def clear_pending_push(self) -> None:
        try:
            self.pending_marker.unlink(missing_ok=True)
        except OSError:
            logger.warning("Unable to remove pending push marker %s", self.pending_marker, exc_info=True)


__all__ = [
    "DEAD_NUMERIC_ID",
    "NIL_UUID",
    "RECORD_SIZE",
    "IdentityRecord",
    "IdentityTable",
    "IdentityTableStore",
    "decode_table",
    "encode_table",
]
