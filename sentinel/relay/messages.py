"""Inbound message models for the relay WebSocket.

Every frame is ``{"type": <event name>, "data": <payload>}``. Each event name
maps to exactly one payload model; anything else is rejected before it can
reach the registry or be forwarded.
"""

from __future__ import annotations

import enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from sentinel.relay.registry import Platform

ADMIN_TARGET = "admin"


class MalformedMessage(ValueError):
    """Frame or payload does not match the protocol."""


class UnknownEvent(MalformedMessage):
    """Frame names an event the relay does not handle."""


class CommandKind(str, enum.Enum):
    LOCK = "LOCK_DEVICE"
    ALARM = "TRIGGER_ALARM"
    WIPE = "WIPE_DATA"
    GET_LOCATION = "GET_LOCATION"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ── Identification ────────────────────────────────────────────────


class RegisterDevice(_Payload):
    device_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("deviceId", "device_id"),
        serialization_alias="deviceId",
    )
    platform: Platform = Field(validation_alias=AliasChoices("platform", "os"))


class Empty(_Payload):
    pass


# ── Signaling ─────────────────────────────────────────────────────


class SessionDescription(_Payload):
    type: Literal["offer", "answer"]
    sdp: str = Field(min_length=1)


class IceCandidate(_Payload):
    model_config = ConfigDict(extra="allow")

    candidate: str
    sdpMid: str | None = None
    sdpMLineIndex: int | None = None


class _Signal(_Payload):
    target: str = Field(min_length=1)


class Offer(_Signal):
    sdp: SessionDescription

    @field_validator("sdp", mode="before")
    @classmethod
    def _bare_sdp(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"type": "offer", "sdp": value}
        return value


class Answer(_Signal):
    sdp: SessionDescription

    @field_validator("sdp", mode="before")
    @classmethod
    def _bare_sdp(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"type": "answer", "sdp": value}
        return value


class Candidate(_Signal):
    candidate: IceCandidate


# ── Commands & files ──────────────────────────────────────────────


class _Targeted(_Payload):
    target_device_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("targetDeviceId", "target_device_id"),
    )


class Command(_Targeted):
    command: CommandKind
    params: dict[str, Any] | None = None


class RequestFiles(_Targeted):
    pass


class DownloadFile(_Targeted):
    file_path: str = Field(min_length=1, validation_alias=AliasChoices("filePath", "file_path"))
    file_name: str = Field(min_length=1, validation_alias=AliasChoices("fileName", "file_name"))


class DeleteFile(_Targeted):
    file_path: str = Field(min_length=1, validation_alias=AliasChoices("filePath", "file_path"))


class FileItem(_Payload):
    name: str
    path: str
    size: int = Field(ge=0)
    mtime: float


class FileList(_Payload):
    files: list[FileItem]
    target: str | None = None


class FileData(_Payload):
    file_name: str = Field(validation_alias=AliasChoices("fileName", "file_name"))
    data: str
    target: str | None = None


class Report(_Payload):
    """Device report forwarded verbatim to controllers."""

    model_config = ConfigDict(extra="allow")

    target: str | None = None


INBOUND: dict[str, type[_Payload]] = {
    "register-device": RegisterDevice,
    "register-admin": Empty,
    "get-active-devices": Empty,
    "offer": Offer,
    "answer": Answer,
    "ice-candidate": Candidate,
    "command": Command,
    "request-files": RequestFiles,
    "download-file": DownloadFile,
    "delete-file": DeleteFile,
    "file-list": FileList,
    "file-data": FileData,
    "location-update": Report,
    "command-result": Report,
    "device-status": Report,
}


def parse_message(frame: Any) -> tuple[str, _Payload]:
    """Validate a raw frame and return ``(event, payload_model)``.

    Raises :class:`UnknownEvent` or :class:`MalformedMessage`.
    """
    if not isinstance(frame, dict):
        raise MalformedMessage("Frame must be a JSON object")
    event = frame.get("type")
    if not isinstance(event, str) or not event:
        raise MalformedMessage("Frame is missing 'type'")
    model = INBOUND.get(event)
    if model is None:
        raise UnknownEvent(f"Unknown event: {event}")
    data = frame.get("data")
    if data is None:
        data = {}
    try:
        return event, model.model_validate(data)
    except ValidationError as e:
        raise MalformedMessage(f"Invalid {event} payload: {e.errors(include_url=False)}") from e
