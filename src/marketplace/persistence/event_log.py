"""Append-only event log — the audit trail of every ledger mutation.

Every state change in the marketplace ledger (vendor admin actions,
order creation, status transitions, courier claims, settlements)
produces an event record appended to the log. Events are immutable once
written and the log is used to settle disputes between vendors,
couriers and admins about who drove which change.

Records are hash-chained: each one carries the hash of the record before
it, and its own hash covers that link. On load the chain is walked from
CHAIN_START, so an edited, deleted or reordered line is rejected.

File format: JSONL, one record per line, keys sorted.
"""

from __future__ import annotations

import enum
import hashlib
import json
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional


CHAIN_START = "sha256:" + "0" * 64


class EventKind(str, enum.Enum):
    """Classification of ledger events."""
    VENDOR_REGISTERED = "vendor_registered"
    VENDOR_STATUS_CHANGED = "vendor_status_changed"
    COMMISSION_RATE_CHANGED = "commission_rate_changed"
    ORDER_CREATED = "order_created"
    ORDER_TRANSITION = "order_transition"
    COURIER_ASSIGNED = "courier_assigned"
    SETTLEMENT_RECORDED = "settlement_recorded"


def _digest(body: dict[str, Any]) -> str:
    encoded = json.dumps(body, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return f"sha256:{hashlib.sha256(encoded).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """One sealed audit record.

    event_hash covers every other field, previous_hash included.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    previous_hash: str
    event_hash: str

    @classmethod
    def create(
        cls,
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
        previous_hash: str = CHAIN_START,
    ) -> EventRecord:
        ts = (timestamp_utc or datetime.now(timezone.utc)).isoformat(timespec="milliseconds")
        unsealed = cls(
            event_id=event_id,
            event_kind=EventKind(event_kind),
            timestamp_utc=ts,
            actor_id=actor_id,
            payload=payload,
            previous_hash=previous_hash,
            event_hash="",
        )
        return unsealed._sealed()

    def body(self) -> dict[str, Any]:
        """The hashed fields, in their stored form."""
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "previous_hash": self.previous_hash,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self.body(), "event_hash": self.event_hash}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventRecord:
        """Rebuild a stored record. Raises KeyError or ValueError if malformed."""
        return cls(
            event_id=data["event_id"],
            event_kind=EventKind(data["event_kind"]),
            timestamp_utc=data["timestamp_utc"],
            actor_id=data["actor_id"],
            payload=data["payload"],
            previous_hash=data["previous_hash"],
            event_hash=data["event_hash"],
        )

    @property
    def is_intact(self) -> bool:
        return _digest(self.body()) == self.event_hash

    def _sealed(self) -> EventRecord:
        return replace(self, event_hash=_digest(self.body()))


class EventLog:
    """Hash-chained audit log with optional JSONL persistence.

    Usage:
        log = EventLog(storage_path=Path("data/events.jsonl"))
        log.record("EVT-00000001", EventKind.ORDER_CREATED, "asha@example.com",
                   {"order_id": "ORD-1"})
        log.events_for("order_id", "ORD-1")

    A record only enters memory after its line reached the file, so a
    failed write leaves the log exactly as it was.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._storage_path = storage_path
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()
        self._head = CHAIN_START
        self._lock = threading.Lock()

        if storage_path and storage_path.exists():
            for event in self._read(storage_path):
                self._link(event)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(
        self,
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Seal a new event onto the chain head and append it.

        Raises ValueError for a duplicate event id and OSError if the
        file write fails.
        """
        with self._lock:
            event = EventRecord.create(
                event_id, event_kind, actor_id, payload,
                timestamp_utc=timestamp_utc, previous_hash=self._head,
            )
            self._commit(event)
        return event

    def append(self, event: EventRecord) -> None:
        """Append an already sealed event. It must extend the current head."""
        with self._lock:
            self._commit(event)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for(self, key: str, value: Any) -> list[EventRecord]:
        """Return events whose payload has key == value (e.g. an order id)."""
        return [e for e in self._events if e.payload.get(key) == value]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def head_hash(self) -> str:
        return self._head

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _commit(self, event: EventRecord) -> None:
        """Caller holds the log lock."""
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")
        if event.previous_hash != self._head:
            raise ValueError(
                f"Event {event.event_id} does not extend the chain head {self._head}"
            )
        if self._storage_path:
            line = json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False)
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        self._link(event)

    def _link(self, event: EventRecord) -> None:
        self._events.append(event)
        self._event_ids.add(event.event_id)
        self._head = event.event_hash

    def _read(self, path: Path) -> Iterator[EventRecord]:
        """Yield stored records in order, verifying each against the chain.

        Fail-closed: a malformed line, a tampered record, a duplicate id
        or a broken link stops the load with ValueError.
        """
        seen: set[str] = set()
        expected = CHAIN_START
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    event = EventRecord.from_dict(json.loads(line))
                except (KeyError, ValueError) as e:
                    raise ValueError(f"Malformed event (line {line_num}): {e}") from e
                if not event.is_intact:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event.event_id}"
                    )
                if event.event_id in seen:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event.event_id}"
                    )
                if event.previous_hash != expected:
                    raise ValueError(
                        f"Chain broken (line {line_num}): event {event.event_id} "
                        f"follows {event.previous_hash}, expected {expected}"
                    )
                seen.add(event.event_id)
                expected = event.event_hash
                yield event
