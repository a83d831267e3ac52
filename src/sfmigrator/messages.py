"""
Messages exchanged between a front end and the migration controller.

Inbound messages arrive as ``{"command": ..., ...}`` dicts and are parsed and
validated once, by ``parse_inbound``, into one of a closed set of frozen
dataclasses. Outbound messages serialise with ``to_payload``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from sfmigrator.core.types import OperationOutcome
from sfmigrator.exceptions import ValidationError
from sfmigrator.pipelines.deployment import SelectionKey

# --- Inbound -------------------------------------------------------------------


@dataclass(frozen=True)
class SelectionChanged:
    """Replace the selected items of one key (an empty list clears it)."""

    command: ClassVar[str] = "selectionChanged"
    key: SelectionKey
    items: tuple[str, ...]

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SelectionChanged:
        return cls(_key(payload), tuple(_str_list(payload, "items")))


@dataclass(frozen=True)
class RemoveItem:
    command: ClassVar[str] = "removeItem"
    key: SelectionKey
    item: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> RemoveItem:
        return cls(_key(payload), _str(payload, "item"))


@dataclass(frozen=True)
class ClearSelections:
    command: ClassVar[str] = "clearSelections"

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ClearSelections:
        return cls()


@dataclass(frozen=True)
class BatchRetrieve:
    """Retrieve every selected item from the source org."""

    command: ClassVar[str] = "batchRetrieve"

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> BatchRetrieve:
        return cls()


@dataclass(frozen=True)
class BatchDeploy:
    """Retrieve every selected item from the source org and deploy it to the target."""

    command: ClassVar[str] = "batchDeploy"

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> BatchDeploy:
        return cls()


@dataclass(frozen=True)
class DeployItem:
    command: ClassVar[str] = "deployItem"
    key: SelectionKey
    item: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> DeployItem:
        return cls(_key(payload), _str(payload, "item"))


@dataclass(frozen=True)
class CancelOperation:
    command: ClassVar[str] = "cancelOperation"

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CancelOperation:
        return cls()


@dataclass(frozen=True)
class RunExport:
    command: ClassVar[str] = "runExport"
    object_name: str
    query: str
    destination: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> RunExport:
        return cls(_str(payload, "objectName"), _str(payload, "query"), _str(payload, "destination"))


InboundMessage = (
    SelectionChanged
    | RemoveItem
    | ClearSelections
    | BatchRetrieve
    | BatchDeploy
    | DeployItem
    | CancelOperation
    | RunExport
)

INBOUND_TYPES: dict[str, type] = {
    cls.command: cls
    for cls in (
        SelectionChanged,
        RemoveItem,
        ClearSelections,
        BatchRetrieve,
        BatchDeploy,
        DeployItem,
        CancelOperation,
        RunExport,
    )
}


def parse_inbound(payload: Any) -> InboundMessage:
    """
    Validate and deserialise an inbound message.

    Raises:
        ValidationError: not a mapping, unknown command, or missing/ill-typed fields
    """
    if not isinstance(payload, dict):
        raise ValidationError(f"Message must be an object, got {type(payload).__name__}")
    command = payload.get("command")
    message_type = INBOUND_TYPES.get(command) if isinstance(command, str) else None
    if message_type is None:
        raise ValidationError(f"Unknown command: {command!r}", details={"command": command})
    return message_type.from_payload(payload)


def _str(payload: dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Field '{name}' must be a non-empty string", details={"command": payload["command"]})
    return value


def _str_list(payload: dict[str, Any], name: str) -> list[str]:
    value = payload.get(name)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValidationError(f"Field '{name}' must be a list of strings", details={"command": payload["command"]})
    return value


def _key(payload: dict[str, Any]) -> SelectionKey:
    return SelectionKey.parse(_str(payload, "key"))


# --- Outbound ------------------------------------------------------------------


@dataclass(frozen=True)
class ProgressUpdate:
    command: ClassVar[str] = "progress"
    message: str

    def to_payload(self) -> dict[str, Any]:
        return {"command": self.command, "message": self.message}


@dataclass(frozen=True)
class OperationSummary:
    """Exactly one per finished operation."""

    command: ClassVar[str] = "summary"
    outcome: OperationOutcome
    message: str
    report_url: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"command": self.command, "outcome": self.outcome.value, "message": self.message}
        if self.report_url:
            payload["reportUrl"] = self.report_url
        return payload


@dataclass(frozen=True)
class SelectionUpdate:
    """Current selection, keyed by ``Type`` or ``Type/Folder``."""

    command: ClassVar[str] = "selectionUpdated"
    selections: dict[str, list[str]]

    def to_payload(self) -> dict[str, Any]:
        return {"command": self.command, "selections": self.selections}


OutboundMessage = ProgressUpdate | OperationSummary | SelectionUpdate
