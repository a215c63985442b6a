"""Wire message models for the relay protocol.

Every message is a JSON object ``{"type": <str>, ...payload}``. Payload keys
are camelCase on the wire; the models expose snake_case attributes and dump
back to the wire shape with :meth:`WireMessage.to_wire`.
"""

from __future__ import annotations

import json
import time
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from panelsync.errors import MessageValidationError


def _now_ms() -> int:
    return int(time.time() * 1000)


class MessageType(str, Enum):
    """Wire message types."""

    # Lifecycle (handled by the relay itself)
    CLIENT_REGISTER = "client.register"
    CLIENT_SYNC_PANELS = "client.syncPanels"

    # Relay -> client
    SERVER_HELLO = "server.hello"
    SERVER_REQUEST_FULL_STATE = "server.requestFullState"
    SERVER_PRIMARY_STATUS = "server.primaryStatus"

    # Primary -> remotes
    FULL_STATE = "full_state"
    STATE_UPDATE = "state.update"
    PANEL_CREATED = "panel_created"
    PANEL_DELETED = "panel_deleted"
    PANEL_RENAMED = "panel_renamed"
    MASTER_SLIDERS = "master.sliders"
    MASTER_SLIDER_VALUE = "master.sliderValue"
    PANEL_SLIDERS = "panel.sliders"
    PANEL_SLIDER_VALUE = "panel.sliderValue"
    METRONOME_STEP = "metronome.step"

    # Remote -> primary
    PANEL_PLAY = "panel.play"
    PANEL_PAUSE = "panel.pause"
    PANEL_TOGGLE = "panel.toggle"
    PANEL_UPDATE = "panel.update"
    PANEL_UPDATE_CODE = "panel.updateCode"
    PANEL_CREATE = "panel.create"
    PANEL_DELETE = "panel.delete"
    GLOBAL_STOP_ALL = "global.stopAll"
    GLOBAL_UPDATE_ALL = "global.updateAll"
    MASTER_SLIDER_CHANGE = "master.sliderChange"
    PANEL_SLIDER_CHANGE = "panel.sliderChange"
    PLAYBACK_CHANGED = "playback_changed"


class MessageCategory(str, Enum):
    """How the relay treats a message type."""

    LIFECYCLE = "lifecycle"
    BROADCAST = "broadcast"
    COMMAND = "command"
    UNKNOWN = "unknown"


LIFECYCLE_TYPES = frozenset(
    {
        MessageType.CLIENT_REGISTER.value,
        MessageType.CLIENT_SYNC_PANELS.value,
    }
)

BROADCAST_TYPES = frozenset(
    {
        MessageType.STATE_UPDATE.value,
        MessageType.FULL_STATE.value,
        MessageType.PANEL_CREATED.value,
        MessageType.PANEL_DELETED.value,
        MessageType.PANEL_RENAMED.value,
        MessageType.MASTER_SLIDERS.value,
        MessageType.MASTER_SLIDER_VALUE.value,
        MessageType.PANEL_SLIDERS.value,
        MessageType.PANEL_SLIDER_VALUE.value,
        MessageType.METRONOME_STEP.value,
    }
)

# Explicit command types outside the panel.* / global.* namespaces
COMMAND_TYPES = frozenset(
    {
        MessageType.MASTER_SLIDER_CHANGE.value,
        MessageType.PANEL_SLIDER_CHANGE.value,
        MessageType.PLAYBACK_CHANGED.value,
        MessageType.SERVER_REQUEST_FULL_STATE.value,
    }
)
COMMAND_PREFIXES = ("panel.", "global.")


def classify(message_type: str | None) -> MessageCategory:
    """Return the routing category for a wire type string.

    Broadcast membership is checked before the ``panel.`` prefix so that
    ``panel.sliders`` and ``panel.sliderValue`` flow to remotes.
    """
    if not isinstance(message_type, str):
        return MessageCategory.UNKNOWN
    if message_type in LIFECYCLE_TYPES:
        return MessageCategory.LIFECYCLE
    if message_type in BROADCAST_TYPES:
        return MessageCategory.BROADCAST
    if message_type in COMMAND_TYPES or message_type.startswith(COMMAND_PREFIXES):
        return MessageCategory.COMMAND
    return MessageCategory.UNKNOWN


# =============================================================================
# Shared payload shapes
# =============================================================================


class WireMessage(BaseModel):
    """Base for all wire messages."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        """Dump with camelCase keys, ready for ``send_json``."""
        return self.model_dump(by_alias=True, mode="json")

    def to_json(self) -> str:
        return json.dumps(self.to_wire())


class SliderPayload(BaseModel):
    """Slider metadata as broadcast to remotes."""

    model_config = ConfigDict(populate_by_name=True)

    slider_id: str = Field(alias="sliderId")
    label: str
    value: float
    min: float = 0.0
    max: float = 1.0
    step: float | None = None


class FullStatePanel(BaseModel):
    """One panel entry of a ``full_state`` baseline."""

    id: str
    title: str
    playing: bool = False
    stale: bool = False
    position: dict[str, float] | None = None


class PanelFlags(BaseModel):
    """Whole-object per-panel entry of a ``state.update``."""

    panel: str
    playing: bool = False
    stale: bool = False


# =============================================================================
# Lifecycle
# =============================================================================


class ClientRegisterMessage(WireMessage):
    type: Literal["client.register"] = "client.register"
    client_type: str = Field(alias="clientType")


class ClientSyncPanelsMessage(WireMessage):
    type: Literal["client.syncPanels"] = "client.syncPanels"
    panels: list[dict[str, Any]] = Field(default_factory=list)


class ServerHelloMessage(WireMessage):
    type: Literal["server.hello"] = "server.hello"
    client_id: str = Field(alias="clientId")
    timestamp: int = Field(default_factory=_now_ms)


class RequestFullStateMessage(WireMessage):
    type: Literal["server.requestFullState"] = "server.requestFullState"
    target_client_id: str | None = Field(None, alias="targetClientId")


class PrimaryStatusMessage(WireMessage):
    """Relay notice to remotes that the primary left or is absent."""

    type: Literal["server.primaryStatus"] = "server.primaryStatus"
    connected: bool


# =============================================================================
# Primary -> remotes
# =============================================================================


class FullStateMessage(WireMessage):
    type: Literal["full_state"] = "full_state"
    panels: list[FullStatePanel] = Field(default_factory=list)
    timestamp: int = Field(default_factory=_now_ms)


class StateUpdateMessage(WireMessage):
    type: Literal["state.update"] = "state.update"
    panels: list[PanelFlags] = Field(default_factory=list)


class PanelCreatedMessage(WireMessage):
    type: Literal["panel_created"] = "panel_created"
    id: str
    title: str
    code: str = ""
    position: dict[str, float] | None = None
    size: dict[str, float] | None = None


class PanelDeletedMessage(WireMessage):
    type: Literal["panel_deleted"] = "panel_deleted"
    id: str


class PanelRenamedMessage(WireMessage):
    type: Literal["panel_renamed"] = "panel_renamed"
    id: str
    new_title: str = Field(alias="newTitle")
    timestamp: int = Field(default_factory=_now_ms)


class MasterSlidersMessage(WireMessage):
    type: Literal["master.sliders"] = "master.sliders"
    sliders: list[SliderPayload] = Field(default_factory=list)


class MasterSliderValueMessage(WireMessage):
    type: Literal["master.sliderValue"] = "master.sliderValue"
    slider_id: str = Field(alias="sliderId")
    value: float


class PanelSlidersMessage(WireMessage):
    type: Literal["panel.sliders"] = "panel.sliders"
    panel_id: str = Field(alias="panelId")
    sliders: list[SliderPayload] = Field(default_factory=list)


class PanelSliderValueMessage(WireMessage):
    type: Literal["panel.sliderValue"] = "panel.sliderValue"
    panel_id: str = Field(alias="panelId")
    slider_id: str = Field(alias="sliderId")
    value: float


class MetronomeStepMessage(WireMessage):
    type: Literal["metronome.step"] = "metronome.step"
    step: int


# =============================================================================
# Remote -> primary
# =============================================================================


class PanelPlayMessage(WireMessage):
    type: Literal["panel.play"] = "panel.play"
    panel: str


class PanelPauseMessage(WireMessage):
    type: Literal["panel.pause"] = "panel.pause"
    panel: str


class PanelToggleMessage(WireMessage):
    type: Literal["panel.toggle"] = "panel.toggle"
    panel: str


class CodePayload(BaseModel):
    code: str


class PanelUpdateMessage(WireMessage):
    """Legacy remote code push: ``{panel, data: {code}}``."""

    type: Literal["panel.update"] = "panel.update"
    panel: str
    data: CodePayload


class PanelUpdateCodeMessage(WireMessage):
    type: Literal["panel.updateCode"] = "panel.updateCode"
    panel_id: str = Field(alias="panelId")
    code: str
    auto_play: bool = Field(False, alias="autoPlay")


class PanelCreateData(BaseModel):
    id: str | None = None
    title: str | None = None
    code: str = ""
    position: dict[str, float] | None = None
    size: dict[str, float] | None = None


class PanelCreateMessage(WireMessage):
    type: Literal["panel.create"] = "panel.create"
    data: PanelCreateData = Field(default_factory=PanelCreateData)


class PanelDeleteMessage(WireMessage):
    type: Literal["panel.delete"] = "panel.delete"
    panel: str


class StopAllMessage(WireMessage):
    type: Literal["global.stopAll"] = "global.stopAll"


class UpdateAllMessage(WireMessage):
    type: Literal["global.updateAll"] = "global.updateAll"


class MasterSliderChangeMessage(WireMessage):
    type: Literal["master.sliderChange"] = "master.sliderChange"
    slider_id: str = Field(alias="sliderId")
    value: float


class PanelSliderChangeMessage(WireMessage):
    type: Literal["panel.sliderChange"] = "panel.sliderChange"
    panel_id: str = Field(alias="panelId")
    slider_id: str = Field(alias="sliderId")
    value: float


class PlaybackChangedMessage(WireMessage):
    type: Literal["playback_changed"] = "playback_changed"
    panel_id: str = Field(alias="panelId")
    playing: bool


# Closed union of everything the clients understand
Message = Annotated[
    ClientRegisterMessage
    | ClientSyncPanelsMessage
    | ServerHelloMessage
    | RequestFullStateMessage
    | PrimaryStatusMessage
    | FullStateMessage
    | StateUpdateMessage
    | PanelCreatedMessage
    | PanelDeletedMessage
    | PanelRenamedMessage
    | MasterSlidersMessage
    | MasterSliderValueMessage
    | PanelSlidersMessage
    | PanelSliderValueMessage
    | MetronomeStepMessage
    | PanelPlayMessage
    | PanelPauseMessage
    | PanelToggleMessage
    | PanelUpdateMessage
    | PanelUpdateCodeMessage
    | PanelCreateMessage
    | PanelDeleteMessage
    | StopAllMessage
    | UpdateAllMessage
    | MasterSliderChangeMessage
    | PanelSliderChangeMessage
    | PlaybackChangedMessage,
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter[Message] = TypeAdapter(Message)


def decode_frame(raw: str | bytes) -> dict[str, Any]:
    """Decode a raw frame into a JSON object.

    Raises:
        MessageValidationError: if the frame is not JSON or not an object.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageValidationError("Invalid JSON in message", {"error": str(e)}) from e
    if not isinstance(data, dict):
        raise MessageValidationError("Message must be a JSON object")
    return data


def parse_message(data: str | bytes | dict[str, Any]) -> Message:
    """Parse a frame or decoded object into its typed message model.

    Raises:
        MessageValidationError: for malformed JSON, unknown types, or bad payloads.
    """
    if not isinstance(data, dict):
        data = decode_frame(data)
    try:
        return _message_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise MessageValidationError(
            f"Unrecognized or invalid message: {data.get('type')!r}",
            {"type": data.get("type"), "errors": e.errors(include_url=False)},
        ) from e
