import json
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, NamedTuple, Optional

from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address

from chainplan.constants import StepStatus
from chainplan.errors import DoubleSubmissionError, InvalidTransitionError, UnresolvedAddressError

try:
    import fcntl

    _HAS_FCNTL = True
except ImportError:
    # non-POSIX; only the in-process lock applies
    _HAS_FCNTL = False

ALLOWED_TRANSITIONS = {
    StepStatus.PENDING: (StepStatus.SUBMITTED, StepStatus.FAILED),
    StepStatus.SUBMITTED: (StepStatus.CONFIRMED, StepStatus.FAILED),
    # a later run may resubmit a failed component
    StepStatus.FAILED: (StepStatus.SUBMITTED, StepStatus.FAILED),
    StepStatus.CONFIRMED: (),
}


class LedgerRecord(NamedTuple):
    """A single appended ledger line."""

    name: str
    status: StepStatus
    timestamp: int
    address: Optional[ChecksumAddress] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    implementation: Optional[ChecksumAddress] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = self._asdict()
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerRecord":
        data = dict(data)
        data["status"] = StepStatus(data["status"])
        return cls(**data)


@contextmanager
def _locked_file(filepath: Path) -> Iterator[BinaryIO]:
    """Opens a ledger file for appending under an exclusive flock (POSIX only)."""
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, "ab") as file:
        if _HAS_FCNTL:
            fcntl.flock(file, fcntl.LOCK_EX)
        try:
            yield file
        finally:
            if _HAS_FCNTL:
                fcntl.flock(file, fcntl.LOCK_UN)


class DeploymentLedger:
    """
    Append-only record of component outcomes.

    The latest record per component is its current entry; a confirmed entry
    can never be superseded. When a filepath is given, each record is appended
    to it as a JSON line so that a later run can resume from the file.

    Claims and transitions hold an exclusive lock on the file and first replay
    whatever other writers appended since the last read, so two ledgers bound
    to the same file never repeat a confirmed component.
    """

    def __init__(self, filepath: Optional[Path] = None):
        self.filepath = filepath
        self._records: List[LedgerRecord] = list()
        self._entries: Dict[str, LedgerRecord] = OrderedDict()
        self._in_flight = set()
        self._lock = threading.RLock()
        self._offset = 0  # bytes of the file already replayed

    @classmethod
    def load(cls, filepath: Path) -> "DeploymentLedger":
        """Replays a ledger file; a missing file yields an empty ledger bound to that path."""
        ledger = cls(filepath=filepath)
        ledger._sync()
        return ledger

    def _sync(self) -> None:
        """Replays complete lines appended to the file since the last read."""
        if self.filepath is None or not self.filepath.exists():
            return
        with open(self.filepath, "rb") as file:
            file.seek(self._offset)
            data = file.read()
        end = data.rfind(b"\n") + 1
        self._offset += end
        for line in data[:end].decode().splitlines():
            line = line.strip()
            if not line:
                continue
            self._replay(LedgerRecord.from_dict(json.loads(line)))

    def _replay(self, record: LedgerRecord) -> None:
        current = self.status(record.name)
        if record.status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Ledger {self.filepath} moves {record.name} from "
                f"{current.value} to {record.status.value}."
            )
        self._apply(record)

    @contextmanager
    def _exclusive(self) -> Iterator[Optional[BinaryIO]]:
        with self._lock:
            if self.filepath is None:
                yield None
                return
            with _locked_file(self.filepath) as file:
                self._sync()
                yield file

    #
    # Reads
    #

    @property
    def records(self) -> List[LedgerRecord]:
        with self._lock:
            return list(self._records)

    def snapshot(self) -> Dict[str, LedgerRecord]:
        """A consistent copy of the current entry of every component."""
        with self._lock:
            return OrderedDict(self._entries)

    def get(self, name: str) -> Optional[LedgerRecord]:
        with self._lock:
            return self._entries.get(name)

    def status(self, name: str) -> StepStatus:
        entry = self.get(name)
        return entry.status if entry else StepStatus.PENDING

    def confirmed_address(self, name: str) -> ChecksumAddress:
        entry = self.get(name)
        if entry is None or entry.status != StepStatus.CONFIRMED:
            status = entry.status.value if entry else StepStatus.PENDING.value
            raise UnresolvedAddressError(name, reason=f"is {status}")
        return entry.address

    def confirmed(self) -> List[LedgerRecord]:
        with self._lock:
            return [e for e in self._entries.values() if e.status == StepStatus.CONFIRMED]

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    #
    # Writes
    #

    def claim(self, name: str) -> Optional[LedgerRecord]:
        """
        Atomically reads the entry of a component and marks it in flight unless it
        is already confirmed. Returns the current entry (None if pending).
        """
        with self._exclusive():
            if name in self._in_flight:
                raise DoubleSubmissionError(f"{name} is already in flight.")
            entry = self._entries.get(name)
            if entry is None or entry.status != StepStatus.CONFIRMED:
                self._in_flight.add(name)
            return entry

    def release(self, name: str) -> None:
        with self._lock:
            self._in_flight.discard(name)

    def transition(
        self,
        name: str,
        status: StepStatus,
        address: Optional[str] = None,
        tx_hash: Optional[str] = None,
        block_number: Optional[int] = None,
        implementation: Optional[str] = None,
        error: Optional[str] = None,
    ) -> LedgerRecord:
        """Appends a record moving a component to `status`."""
        with self._exclusive() as file:
            current = self.status(name)
            if status not in ALLOWED_TRANSITIONS[current]:
                raise InvalidTransitionError(
                    f"{name} cannot transition from {current.value} to {status.value}."
                )
            previous = self._entries.get(name)
            # only the transaction of a pending submission settles with it
            if tx_hash is None and previous and previous.status == StepStatus.SUBMITTED:
                tx_hash = previous.tx_hash

            record = LedgerRecord(
                name=name,
                status=status,
                timestamp=int(time.time()),
                address=to_checksum_address(address) if address else None,
                tx_hash=tx_hash,
                block_number=block_number,
                implementation=to_checksum_address(implementation) if implementation else None,
                error=error,
            )
            self._persist(file, record)
            self._apply(record)
            if status in (StepStatus.CONFIRMED, StepStatus.FAILED):
                self._in_flight.discard(name)
            return record

    def _apply(self, record: LedgerRecord) -> None:
        self._records.append(record)
        self._entries[record.name] = record

    def _persist(self, file: Optional[BinaryIO], record: LedgerRecord) -> None:
        if file is None:
            return
        file.write((json.dumps(record.to_dict()) + "\n").encode())
        file.flush()
        self._offset = file.tell()
