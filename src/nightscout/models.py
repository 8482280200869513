"""Pydantic models for the Nightscout wire shapes.

Field names are snake_case; aliases carry the exact Nightscout keys so
``model_validate`` reads remote JSON and ``to_wire()`` writes it back.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, TypeAdapter, ValidationError

from src.nightscout.errors import DecodeError, EncodingError
from src.nightscout.events import EventType, PumpHistoryEvent, TempType
from src.nightscout.query import iso8601

# ---------- Local-origin markers ----------
#
# ``enteredBy`` values that identify records this app wrote, so fetches can
# skip (or, for overrides, select) them.

CARBS_MANUAL_ENTERED_BY = "Open-iAPS"
TREATMENT_LOCAL_ENTERED_BY = "iAPS"
EXERCISE_LOCAL_ENTERED_BY = "Open-iAPS"
ANNOUNCEMENT_REMOTE_ENTERED_BY = "remote"

# Written back exactly as the $eq delete filter formats it.
NSDateTime = Annotated[datetime, PlainSerializer(iso8601, return_type=str, when_used="json")]


class NightscoutBase(BaseModel):
    """Base model with shared config for all Nightscout schemas."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------- Glucose ----------


class BloodGlucose(NightscoutBase):
    id: str | None = Field(default=None, alias="_id")
    sgv: int | None = None
    glucose: int | None = None
    direction: str | None = None
    date_ms: int | None = Field(default=None, alias="date")
    date_string: str | None = Field(default=None, alias="dateString")
    type: str | None = None
    filtered: float | None = None
    unfiltered: float | None = None
    noise: int | None = None


# ---------- Treatments (fetchable) ----------


class CarbsEntry(NightscoutBase):
    id: str | None = Field(default=None, alias="_id")
    created_at: NSDateTime
    carbs: float
    fat: float | None = None
    protein: float | None = None
    note: str | None = Field(default=None, alias="notes")
    entered_by: str | None = Field(default=None, alias="enteredBy")
    is_fpu: bool | None = Field(default=None, alias="isFPU")


class TempTarget(NightscoutBase):
    id: str | None = Field(default=None, alias="_id")
    name: str | None = None
    created_at: NSDateTime
    target_top: float | None = Field(default=None, alias="targetTop")
    target_bottom: float | None = Field(default=None, alias="targetBottom")
    duration: float
    entered_by: str | None = Field(default=None, alias="enteredBy")
    reason: str | None = None


class NightscoutExercise(NightscoutBase):
    """An override, stored in Nightscout as an exercise treatment."""

    id: str | None = Field(default=None, alias="_id")
    created_at: NSDateTime
    duration: float | None = None
    event_type: EventType = Field(default=EventType.NS_EXERCISE, alias="eventType")
    entered_by: str = Field(default=EXERCISE_LOCAL_ENTERED_BY, alias="enteredBy")
    notes: str | None = None


class AnnouncementAction(str, Enum):
    BOLUS = "bolus"
    PUMP = "pump"
    LOOPING = "looping"
    TEMP_BASAL = "tempbasal"
    MEAL = "meal"


class Announcement(NightscoutBase):
    """A remote command posted by a caregiver as an announcement.

    ``notes`` has the form ``action:argument`` (e.g. ``bolus:1.5``,
    ``pump:suspend``, ``meal:20,5,5``).  Unrecognized notes parse to no
    action and are left to the caller to ignore.
    """

    id: str | None = Field(default=None, alias="_id")
    created_at: NSDateTime
    entered_by: str | None = Field(default=None, alias="enteredBy")
    notes: str = ""

    @property
    def action(self) -> AnnouncementAction | None:
        head, sep, _ = self.notes.partition(":")
        if not sep:
            return None
        try:
            return AnnouncementAction(head.strip().lower())
        except ValueError:
            return None

    @property
    def argument(self) -> str | None:
        if self.action is None:
            return None
        return self.notes.partition(":")[2].strip()


# ---------- Treatments (upload) ----------

_BOLUS_TYPES = {
    EventType.BOLUS,
    EventType.MEAL_BOLUS,
    EventType.CORRECTION_BOLUS,
    EventType.SNACK_BOLUS,
}


class NightscoutTreatment(NightscoutBase):
    id: str | None = None
    event_type: EventType = Field(alias="eventType")
    created_at: NSDateTime
    entered_by: str = Field(default=TREATMENT_LOCAL_ENTERED_BY, alias="enteredBy")
    insulin: float | None = None
    carbs: float | None = None
    fat: float | None = None
    protein: float | None = None
    rate: float | None = None
    absolute: float | None = None
    percent: float | None = None
    duration: int | None = None
    target_top: float | None = Field(default=None, alias="targetTop")
    target_bottom: float | None = Field(default=None, alias="targetBottom")
    glucose: float | None = None
    units: str | None = None
    notes: str | None = None
    bolus: PumpHistoryEvent | None = None

    @classmethod
    def from_pump_event(cls, event: PumpHistoryEvent) -> "NightscoutTreatment":
        """Translate a pump history event into its Nightscout treatment.

        Pump-vocabulary tags are rewritten to their Nightscout spelling;
        only attributes that apply to the event are carried over.
        Insulin deliveries also carry the source event under ``bolus``,
        which is the key insulin deletes filter on.
        """
        fields: dict[str, Any] = {
            "id": event.id,
            "created_at": event.timestamp,
            "notes": event.note,
        }
        if event.is_external_insulin:
            fields["event_type"] = EventType.NS_EXTERNAL_INSULIN
            fields["insulin"] = _as_float(event.amount)
            fields["bolus"] = event
        elif event.type in _BOLUS_TYPES:
            fields["event_type"] = (
                EventType.CORRECTION_BOLUS if event.type == EventType.BOLUS else event.type
            )
            fields["insulin"] = _as_float(event.amount)
            fields["bolus"] = event
            if event.is_smb:
                fields["notes"] = event.note or "SMB"
        elif event.type in (EventType.TEMP_BASAL, EventType.NS_TEMP_BASAL):
            fields["event_type"] = EventType.NS_TEMP_BASAL
            fields["rate"] = _as_float(event.rate)
            if event.temp == TempType.PERCENT:
                fields["percent"] = _as_float(event.rate)
            else:
                fields["absolute"] = _as_float(event.rate)
            fields["duration"] = (
                event.duration_min if event.duration_min is not None else event.duration
            )
        elif event.type in (EventType.JOURNAL_CARBS, EventType.NS_CARB_CORRECTION):
            fields["event_type"] = EventType.NS_CARB_CORRECTION
            fields["carbs"] = event.carb_input
        else:
            fields["event_type"] = event.type.to_remote()
            fields["duration"] = event.duration
        return cls(**fields)


# ---------- Opaque upload-only payloads ----------


class OpaquePayload(NightscoutBase):
    """Upload-only payload; unknown keys are passed through untouched."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class NightscoutStatus(OpaquePayload):
    device: str | None = None


class NightscoutStatistics(OpaquePayload):
    pass


class NightscoutPreferences(OpaquePayload):
    pass


class NightscoutSettings(OpaquePayload):
    pass


class NightscoutProfileStore(OpaquePayload):
    default_profile: str | None = Field(default=None, alias="defaultProfile")
    start_date: datetime | None = Field(default=None, alias="startDate")
    units: str | None = None
    store: dict[str, Any] | None = None


# ---------- Codec helpers ----------

M = TypeVar("M", bound=BaseModel)


def decode_list(model: type[M], body: bytes) -> list[M]:
    """Decode a JSON array response into a list of ``model``.

    Raises:
        DecodeError: If the body is not JSON or does not match the shape.
    """
    try:
        return TypeAdapter(list[model]).validate_json(body)  # type: ignore[valid-type]
    except ValidationError as exc:
        raise DecodeError(f"Could not decode {model.__name__} list: {exc}") from exc


def encode_payload(payload: BaseModel | Sequence[BaseModel] | dict[str, Any]) -> bytes:
    """Serialize an upload payload (object or array) to JSON bytes.

    Raises:
        EncodingError: If the payload contains values JSON cannot represent.
    """
    try:
        if isinstance(payload, BaseModel):
            data: Any = _dump(payload)
        elif isinstance(payload, dict):
            data = payload
        else:
            data = [_dump(item) for item in payload]
        return json.dumps(data, allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"Could not encode upload payload: {exc}") from exc


def _dump(model: BaseModel) -> Any:
    if isinstance(model, NightscoutBase):
        return model.to_wire()
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def _as_float(value: Any) -> float | None:
    return float(value) if value is not None else None
