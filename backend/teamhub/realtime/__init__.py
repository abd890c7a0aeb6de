"""Realtime change propagation."""

from teamhub.realtime.broker import ChangeBroker, Subscription, broker
from teamhub.realtime.debounce import Debouncer
from teamhub.realtime.events import PUBLISHED_TABLES, ChangeEvent, ChangeType

__all__ = [
    "ChangeBroker",
    "ChangeEvent",
    "ChangeType",
    "Debouncer",
    "PUBLISHED_TABLES",
    "Subscription",
    "broker",
]
