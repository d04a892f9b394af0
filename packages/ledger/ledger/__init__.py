"""Nuvelon Ledger: clients, plans and their lifecycle rules."""

from ledger.lifecycle import ClientLifecycle
from ledger.models import Address, Client, ClientStatus, ClientStatusUpdate, HistoryAction, HistoryEntry, Plan
from ledger.store import ClientStore

__all__ = [
    "ClientLifecycle",
    "ClientStore",
    "Address", "Client", "ClientStatus", "ClientStatusUpdate",
    "HistoryAction", "HistoryEntry", "Plan",
]
