"""Nightscout remote synchronization client.

Subpackages:
    sync/  — Incremental pull across all fetchable record families

Core modules:
    events    — Pump event taxonomy and device-lifecycle classification
    models    — Nightscout wire models and local-origin markers
    client    — NightscoutAPI: fetch, upload and delete operations
    transport — httpx-backed request execution
    retry     — Bounded retry wrapper
    query     — Query filter builders
    errors    — Error taxonomy
"""

from src.nightscout.client import NightscoutAPI, api_secret_digest
from src.nightscout.errors import (
    BadStatusCodeError,
    DecodeError,
    EncodingError,
    MissingURLError,
    NetworkError,
    NightscoutError,
    TransportError,
)
from src.nightscout.events import (
    ComponentType,
    EventType,
    LifecycleEvent,
    PumpEventType,
    PumpHistoryEvent,
    TempType,
    classify,
)

__all__ = [
    "NightscoutAPI",
    "api_secret_digest",
    "NightscoutError",
    "TransportError",
    "BadStatusCodeError",
    "NetworkError",
    "DecodeError",
    "MissingURLError",
    "EncodingError",
    "EventType",
    "TempType",
    "PumpEventType",
    "ComponentType",
    "LifecycleEvent",
    "PumpHistoryEvent",
    "classify",
]
