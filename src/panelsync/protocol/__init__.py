"""Wire protocol shared by the relay, the primary and the remotes."""

from .messages import (
    BROADCAST_TYPES,
    COMMAND_TYPES,
    LIFECYCLE_TYPES,
    ClientRegisterMessage,
    ClientSyncPanelsMessage,
    FullStateMessage,
    FullStatePanel,
    MasterSliderChangeMessage,
    MasterSlidersMessage,
    MasterSliderValueMessage,
    Message,
    MessageCategory,
    MessageType,
    PanelCreatedMessage,
    PanelCreateMessage,
    PanelDeletedMessage,
    PanelFlags,
    PanelRenamedMessage,
    PanelSliderChangeMessage,
    PanelSlidersMessage,
    PanelSliderValueMessage,
    PrimaryStatusMessage,
    RequestFullStateMessage,
    ServerHelloMessage,
    SliderPayload,
    StateUpdateMessage,
    WireMessage,
    classify,
    decode_frame,
    parse_message,
)

__all__ = [
    "BROADCAST_TYPES",
    "COMMAND_TYPES",
    "LIFECYCLE_TYPES",
    "ClientRegisterMessage",
    "ClientSyncPanelsMessage",
    "FullStateMessage",
    "FullStatePanel",
    "MasterSliderChangeMessage",
    "MasterSlidersMessage",
    "MasterSliderValueMessage",
    "Message",
    "MessageCategory",
    "MessageType",
    "PanelCreatedMessage",
    "PanelCreateMessage",
    "PanelDeletedMessage",
    "PanelFlags",
    "PanelRenamedMessage",
    "PanelSliderChangeMessage",
    "PanelSlidersMessage",
    "PanelSliderValueMessage",
    "PrimaryStatusMessage",
    "RequestFullStateMessage",
    "ServerHelloMessage",
    "SliderPayload",
    "StateUpdateMessage",
    "WireMessage",
    "classify",
    "decode_frame",
    "parse_message",
]
