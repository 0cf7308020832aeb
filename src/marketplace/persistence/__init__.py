"""Persistence — audit event log and state snapshots."""

from marketplace.persistence.event_log import EventKind, EventLog, EventRecord
from marketplace.persistence.state_store import StateStore, StoredState

__all__ = [
    "EventKind",
    "EventLog",
    "EventRecord",
    "StateStore",
    "StoredState",
]
