"""Persistence — append-only event log and state snapshots."""

from raiseledger.persistence.event_log import EventKind, EventLog, EventRecord
from raiseledger.persistence.state_store import StateStore

__all__ = ["EventKind", "EventLog", "EventRecord", "StateStore"]
