"""Collaborators that supply event logs, receipts and credentials."""

from .base import EventSource
from .memory import InMemoryEventSource
from .http import HttpEventSource

__all__ = [
    "EventSource",
    "InMemoryEventSource",
    "HttpEventSource",
]
