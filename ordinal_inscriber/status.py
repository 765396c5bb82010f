"""In-memory tracking of inscription attempts.

Records live for the lifetime of the process only. The WSGI server handles
requests on several threads, so every access goes through one lock.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .executor import CommandResult, CommandRunner, INSCRIBE_TIMEOUT
from .parsing import mentions_success, parse_confirmations, parse_inscribe_output

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = frozenset({"id", "fileName", "fileType"})
FAILURE_MARKERS = ("not found", "error")


class InscriptionState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class InscriptionNotFound(KeyError):
    """Raised when no record exists for an id."""

    def __str__(self) -> str:
        return f"Inscription not found: {self.args[0]}"


@dataclass
class InscriptionRecord:
    id: str
    file_name: str
    file_type: str
    status: InscriptionState = InscriptionState.PENDING
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    txid: Optional[str] = None
    ordinal_id: Optional[str] = None
    error: Optional[str] = None
    satoshi_type: Optional[str] = None
    command: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "fileName": self.file_name,
            "fileType": self.file_type,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
        }
        for key, value in (
            ("txid", self.txid),
            ("ordinalId", self.ordinal_id),
            ("error", self.error),
            ("satoshiType", self.satoshi_type),
            ("command", self.command),
        ):
            if value is not None:
                payload[key] = value
        return payload


# JSON field name -> record attribute for PATCH bodies
_UPDATABLE = {
    "status": "status",
    "txid": "txid",
    "ordinalId": "ordinal_id",
    "error": "error",
    "satoshiType": "satoshi_type",
    "command": "command",
}


def _coerce_state(value: Any) -> InscriptionState:
    try:
        return InscriptionState(value)
    except ValueError as exc:
        raise ValueError(f"Invalid status: {value!r}") from exc


def _apply_success_output(record: InscriptionRecord, output: str) -> None:
    outcome = parse_inscribe_output(output)
    if outcome.has_transaction:
        record.txid = outcome.transaction_id
        record.status = InscriptionState.PENDING
    if outcome.has_inscription:
        record.ordinal_id = outcome.inscription_id
        record.status = InscriptionState.SUCCESS
    if mentions_success(output):
        record.status = InscriptionState.SUCCESS


class InscriptionStatusStore:
    """Thread-safe map of inscription id to :class:`InscriptionRecord`."""

    def __init__(self) -> None:
        self._records: Dict[str, InscriptionRecord] = {}
        self._lock = threading.Lock()

    def create(
        self,
        file_name: str,
        file_type: str,
        *,
        satoshi_type: Optional[str] = None,
        command: Optional[str] = None,
    ) -> InscriptionRecord:
        if not file_name or not file_type:
            raise ValueError("Missing required fields")
        record = InscriptionRecord(
            id=str(uuid.uuid4()),
            file_name=file_name,
            file_type=file_type,
            satoshi_type=satoshi_type or None,
            command=command or None,
        )
        with self._lock:
            self._records[record.id] = record
        return replace(record)

    def get(self, inscription_id: str) -> InscriptionRecord:
        with self._lock:
            record = self._records.get(inscription_id)
            if record is None:
                raise InscriptionNotFound(inscription_id)
            return replace(record)

    def list(self) -> List[InscriptionRecord]:
        with self._lock:
            records = [replace(record) for record in self._records.values()]
        return sorted(records, key=lambda record: record.timestamp, reverse=True)

    def update(self, inscription_id: str, changes: Mapping[str, Any]) -> InscriptionRecord:
        """Apply a partial update; ``id``, ``fileName`` and ``fileType`` are ignored."""

        with self._lock:
            record = self._records.get(inscription_id)
            if record is None:
                raise InscriptionNotFound(inscription_id)
            updated = replace(record)
            for key, value in changes.items():
                if key in IMMUTABLE_FIELDS or key not in _UPDATABLE:
                    continue
                if key == "status":
                    value = _coerce_state(value)
                setattr(updated, _UPDATABLE[key], value)
            self._records[inscription_id] = updated
            return replace(updated)

    def delete(self, inscription_id: str) -> None:
        with self._lock:
            if self._records.pop(inscription_id, None) is None:
                raise InscriptionNotFound(inscription_id)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def _save(self, record: InscriptionRecord) -> InscriptionRecord:
        with self._lock:
            if record.id not in self._records:
                raise InscriptionNotFound(record.id)
            self._records[record.id] = record
            return replace(record)

    def apply_output(
        self,
        inscription_id: str,
        result: CommandResult,
        *,
        command: Optional[str] = None,
    ) -> InscriptionRecord:
        """Update a record from the result of running its inscribe command."""

        record = self.get(inscription_id)
        if result.error:
            record.status = InscriptionState.FAILED
            record.error = result.output
        else:
            if command:
                record.command = command
            _apply_success_output(record, result.output)
        return self._save(record)

    def process(self, inscription_id: str, command: str, runner: CommandRunner) -> InscriptionRecord:
        if not command:
            raise ValueError("Command is required")
        self.get(inscription_id)
        result = runner.run(command, timeout=INSCRIBE_TIMEOUT)
        return self.apply_output(inscription_id, result, command=command)

    def check(
        self,
        inscription_id: str,
        runner: CommandRunner,
        *,
        bitcoin_container: str,
    ) -> InscriptionRecord:
        """Re-query the node (by txid) or re-run the command to refresh a record."""

        record = self.get(inscription_id)
        if record.status is InscriptionState.SUCCESS or not (record.txid or record.command):
            return record

        if record.txid:
            result = runner.run(
                ["docker", "exec", bitcoin_container, "bitcoin-cli", "gettransaction", record.txid]
            )
        else:
            result = runner.run(record.command, timeout=INSCRIBE_TIMEOUT)

        output = result.output
        if result.error:
            if any(marker in output for marker in FAILURE_MARKERS):
                record.status = InscriptionState.FAILED
                record.error = output
                logger.warning("Inscription %s marked failed: %s", inscription_id, output.strip())
            return self._save(record)

        confirmations = parse_confirmations(output)
        if confirmations is not None:
            if confirmations > 0:
                record.status = InscriptionState.SUCCESS
                outcome = parse_inscribe_output(output)
                if outcome.has_inscription:
                    record.ordinal_id = outcome.inscription_id
            if mentions_success(output):
                record.status = InscriptionState.SUCCESS
        else:
            _apply_success_output(record, output)
        return self._save(record)
