"""Pump history events and the device-lifecycle classification.

Two vocabularies name the same physical actions: the pump telemetry
protocol uses short codes (``PumpBattery``, ``TempBasal``) while Nightscout
uses human-readable event names (``Pump Battery Change``, ``Temp Basal``).
``EventType`` is the closed union of both, and ``classify()`` collapses
either spelling into one lifecycle signal so the orchestrator never needs
to know which vocabulary produced an event.

Adding a physical action means extending ``EventType`` and
``_CLASSIFICATION`` together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("nightsync.nightscout.events")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventVocabulary(str, Enum):
    """Which source vocabulary a raw event tag belongs to."""

    PUMP = "pump"
    REMOTE = "remote"


class EventType(str, Enum):
    """Closed set of recognized event tags; values are wire-stable."""

    # Pump-native tags
    BOLUS = "Bolus"
    MEAL_BOLUS = "Meal Bolus"
    CORRECTION_BOLUS = "Correction Bolus"
    SNACK_BOLUS = "Snack Bolus"
    BOLUS_WIZARD = "BolusWizard"
    TEMP_BASAL = "TempBasal"
    TEMP_BASAL_DURATION = "TempBasalDuration"
    PUMP_SUSPEND = "PumpSuspend"
    PUMP_RESUME = "PumpResume"
    PUMP_ALARM = "PumpAlarm"
    PUMP_BATTERY = "PumpBattery"
    REWIND = "Rewind"
    PRIME = "Prime"
    JOURNAL_CARBS = "JournalEntryMealMarker"

    # Nightscout-native tags
    NS_TEMP_BASAL = "Temp Basal"
    NS_CARB_CORRECTION = "Carb Correction"
    NS_TEMP_TARGET = "Temporary Target"
    NS_INSULIN_CHANGE = "Insulin Change"
    NS_SITE_CHANGE = "Site Change"
    NS_BATTERY_CHANGE = "Pump Battery Change"
    NS_ANNOUNCEMENT = "Announcement"
    NS_SENSOR_CHANGE = "Sensor Start"
    NS_EXTERNAL_INSULIN = "External Insulin"
    NS_EXERCISE = "Exercice"  # sic: the remote store spells it this way

    @property
    def vocabulary(self) -> EventVocabulary:
        return EventVocabulary.REMOTE if self.name.startswith("NS_") else EventVocabulary.PUMP

    def to_remote(self) -> "EventType":
        """Return the Nightscout spelling of this action, or self if it has none."""
        return _PUMP_TO_REMOTE.get(self, self)

    def to_pump(self) -> "EventType":
        """Return the pump spelling of this action, or self if it has none."""
        return _REMOTE_TO_PUMP.get(self, self)


class TempType(str, Enum):
    """Temp-basal delivery mode."""

    ABSOLUTE = "absolute"
    PERCENT = "percent"


class PumpEventType(str, Enum):
    """Coarse device-lifecycle signal derived from an ``EventType``."""

    PRIME = "prime"
    RESUME = "resume"
    REWIND = "rewind"
    SUSPEND = "suspend"
    REPLACE_COMPONENT = "replace_component"
    ALARM = "alarm"


class ComponentType(str, Enum):
    """Physical component named by a replace-component event."""

    PUMP = "pump"
    RESERVOIR = "reservoir"
    INFUSION_SET = "infusion_set"


# Same physical action, pump spelling -> Nightscout spelling.
_PUMP_TO_REMOTE: dict[EventType, EventType] = {
    EventType.TEMP_BASAL: EventType.NS_TEMP_BASAL,
    EventType.PUMP_BATTERY: EventType.NS_BATTERY_CHANGE,
    EventType.JOURNAL_CARBS: EventType.NS_CARB_CORRECTION,
}
_REMOTE_TO_PUMP: dict[EventType, EventType] = {v: k for k, v in _PUMP_TO_REMOTE.items()}


# ---------------------------------------------------------------------------
# Lifecycle classification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LifecycleEvent:
    """Result of classifying an event tag.

    Attributes:
        kind:      Lifecycle signal.
        component: Replaced component; set only when kind is REPLACE_COMPONENT.
    """

    kind: PumpEventType
    component: ComponentType | None = None


_CLASSIFICATION: dict[EventType, LifecycleEvent] = {
    EventType.PRIME: LifecycleEvent(PumpEventType.PRIME),
    EventType.PUMP_RESUME: LifecycleEvent(PumpEventType.RESUME),
    EventType.REWIND: LifecycleEvent(PumpEventType.REWIND),
    EventType.PUMP_SUSPEND: LifecycleEvent(PumpEventType.SUSPEND),
    EventType.NS_BATTERY_CHANGE: LifecycleEvent(
        PumpEventType.REPLACE_COMPONENT, ComponentType.PUMP
    ),
    EventType.PUMP_BATTERY: LifecycleEvent(
        PumpEventType.REPLACE_COMPONENT, ComponentType.PUMP
    ),
    EventType.NS_INSULIN_CHANGE: LifecycleEvent(
        PumpEventType.REPLACE_COMPONENT, ComponentType.RESERVOIR
    ),
    EventType.NS_SITE_CHANGE: LifecycleEvent(
        PumpEventType.REPLACE_COMPONENT, ComponentType.INFUSION_SET
    ),
    EventType.PUMP_ALARM: LifecycleEvent(PumpEventType.ALARM),
}


def classify(event_type: EventType) -> LifecycleEvent | None:
    """Map an event tag to its lifecycle signal.

    Total over ``EventType``: tags without a lifecycle meaning (boluses,
    temp basals, announcements, ...) return None.
    """
    return _CLASSIFICATION.get(event_type)


# ---------------------------------------------------------------------------
# PumpHistoryEvent
# ---------------------------------------------------------------------------


class PumpHistoryEvent(BaseModel):
    """One recorded pump/device action.

    Only the attributes that apply to ``type`` are set; every other field is
    None and is omitted from the encoded JSON, so "field present" is the
    signal that the attribute applies.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    type: EventType = Field(alias="_type")
    timestamp: datetime
    amount: Decimal | None = None
    duration: int | None = None
    duration_min: int | None = Field(default=None, alias="duration (min)")
    rate: Decimal | None = None
    temp: TempType | None = None
    carb_input: int | None = Field(default=None, alias="carb_input")
    note: str | None = None
    is_smb: bool | None = Field(default=None, alias="isSMB")
    is_external_insulin: bool | None = Field(default=None, alias="isExternalInsulin")

    @property
    def lifecycle(self) -> LifecycleEvent | None:
        return classify(self.type)

    def to_wire(self) -> dict:
        """Encode with wire keys, dropping absent attributes."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_wire(cls, data: dict) -> "PumpHistoryEvent":
        return cls.model_validate(data)


def latest_lifecycle_events(
    events: Iterable[PumpHistoryEvent],
) -> dict[LifecycleEvent, datetime]:
    """Fold pump history into the latest timestamp per lifecycle signal.

    Unclassified events are ignored.  Answers bookkeeping questions such as
    "when was the reservoir last replaced".

    Args:
        events: Pump history in any order.

    Returns:
        Mapping of lifecycle signal to the most recent event timestamp.
    """
    latest: dict[LifecycleEvent, datetime] = {}
    for event in events:
        signal = classify(event.type)
        if signal is None:
            continue
        current = latest.get(signal)
        if current is None or event.timestamp > current:
            latest[signal] = event.timestamp
    logger.debug("Lifecycle fold produced %d signals", len(latest))
    return latest
