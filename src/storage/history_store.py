"""
Persisted trade-history and telemetry ledgers.

Both ledgers are newest-first, capped, and written to a JSON file on every
mutation so they survive restarts. After each local write an optional
mirror hook is called (remote upload, socket broadcast); the hook is
best-effort and a failure there never rolls back the local write.
"""
import json
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Sequence, Tuple, TypeVar

from src.constants import HISTORY_CAP, LOGS_CAP
from src.domain.models import ClosedTradeRecord, LogEntry, LogType, now_display_time
from src.monitoring.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# (all records after the write, records added by the write)
MirrorHook = Callable[[Tuple[Any, ...], Tuple[Any, ...]], None]


class CappedLedger(Generic[T]):
    """Newest-first bounded list backed by a JSON file."""

    def __init__(
        self,
        path: str | Path,
        cap: int,
        *,
        encode: Callable[[T], Dict[str, Any]],
        decode: Callable[[Mapping[str, Any]], T],
        name: str,
        mirror: Optional[MirrorHook] = None,
    ):
        if cap < 1:
            raise ValueError("cap must be >= 1")
        self.path = Path(path)
        self.cap = cap
        self.name = name
        self.mirror = mirror
        self._encode = encode
        self._decode = decode
        self._items: Tuple[T, ...] = ()

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> Tuple[T, ...]:
        return self._items

    def prepend(self, records: Sequence[T]) -> Tuple[T, ...]:
        """Insert records ahead of existing ones; the oldest fall off past the cap."""
        if not records:
            return self._items
        added = tuple(records)
        self._items = (added + self._items)[: self.cap]
        self._persist()
        self._notify(added)
        return self._items

    def replace(self, records: Sequence[T], *, mirror: bool = False) -> None:
        """Wholesale replacement (startup sync). Not mirrored back by default."""
        self._items = tuple(records)[: self.cap]
        self._persist()
        if mirror:
            self._notify(())

    def clear(self) -> None:
        self._items = ()
        self._persist()
        self._notify(())

    def decode_many(self, raw: Sequence[Any]) -> List[T]:
        """Decode wire records, skipping ones that aren't usable."""
        decoded: List[T] = []
        skipped = 0
        for item in raw:
            if not isinstance(item, Mapping):
                skipped += 1
                continue
            try:
                decoded.append(self._decode(item))
            except (ValueError, TypeError):
                skipped += 1
        if skipped:
            logger.warning("LEDGER_RECORDS_SKIPPED", ledger=self.name, skipped=skipped)
        return decoded

    def restore(self) -> int:
        """Load the local cache. A missing or corrupt file leaves the ledger empty."""
        if not self.path.exists():
            logger.info("ledger_no_saved_state", ledger=self.name, path=str(self.path))
            return 0
        try:
            raw = json.loads(self.path.read_text())
        except (OSError, ValueError):
            logger.exception("ledger_restore_failed", ledger=self.name, path=str(self.path))
            return 0
        if not isinstance(raw, list):
            logger.warning("ledger_restore_not_a_list", ledger=self.name, path=str(self.path))
            return 0
        self._items = tuple(self.decode_many(raw))[: self.cap]
        logger.info("ledger_restored", ledger=self.name, records=len(self._items))
        return len(self._items)

    def to_wire(self) -> List[Dict[str, Any]]:
        return [self._encode(item) for item in self._items]

    def _persist(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(".tmp")
            tmp.write_text(json.dumps(self.to_wire()))
            tmp.replace(self.path)  # atomic on POSIX
        except OSError:
            logger.exception("ledger_persist_failed", ledger=self.name, path=str(self.path))

    def _notify(self, added: Tuple[T, ...]) -> None:
        if self.mirror is None:
            return
        try:
            self.mirror(self._items, added)
        except Exception as e:
            # Mirroring is best-effort; the local write already happened
            logger.warning("LEDGER_MIRROR_FAILED", ledger=self.name, error=str(e), error_type=type(e).__name__)


class HistoryStore(CappedLedger[ClosedTradeRecord]):
    """Closed and cancelled trades, newest first, capped at 1000."""

    def __init__(self, path: str | Path, cap: int = HISTORY_CAP, mirror: Optional[MirrorHook] = None):
        super().__init__(
            path,
            cap,
            encode=ClosedTradeRecord.to_dict,
            decode=ClosedTradeRecord.from_dict,
            name="history",
            mirror=mirror,
        )

    def record(self, records: Sequence[ClosedTradeRecord]) -> Tuple[ClosedTradeRecord, ...]:
        return self.prepend(records)


_LOG_LEVELS = {
    LogType.INFO: "info",
    LogType.SUCCESS: "info",
    LogType.WARNING: "warning",
    LogType.ERROR: "error",
}


class LogStore(CappedLedger[LogEntry]):
    """User-facing telemetry ring, newest first, capped at 2000."""

    def __init__(self, path: str | Path, cap: int = LOGS_CAP, mirror: Optional[MirrorHook] = None):
        super().__init__(
            path,
            cap,
            encode=LogEntry.to_dict,
            decode=LogEntry.from_dict,
            name="logs",
            mirror=mirror,
        )

    def add(self, log_type: LogType, trigger: str, msg: str) -> LogEntry:
        entry = LogEntry(time=now_display_time(), type=log_type, trigger=trigger, msg=msg)
        getattr(logger, _LOG_LEVELS[log_type])("TELEMETRY", trigger=trigger, type=log_type.value, msg=msg)
        self.prepend([entry])
        return entry

    def info(self, trigger: str, msg: str) -> LogEntry:
        return self.add(LogType.INFO, trigger, msg)

    def success(self, trigger: str, msg: str) -> LogEntry:
        return self.add(LogType.SUCCESS, trigger, msg)

    def warning(self, trigger: str, msg: str) -> LogEntry:
        return self.add(LogType.WARNING, trigger, msg)

    def error(self, trigger: str, msg: str) -> LogEntry:
        return self.add(LogType.ERROR, trigger, msg)
