"""Panel, master unit and snapshot records owned by the state authority."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field, replace
from typing import Any

from panelsync.protocol.messages import FullStatePanel, PanelFlags, SliderPayload

MASTER_PANEL_ID = "panel-0"

TITLE_MAX_LENGTH = 50
DEFAULT_SIZE = {"w": 450.0, "h": 56.0}
Z_INDEX_STEP = 10

_HTML_TAG_RE = re.compile(r"<[^>]*>")


def sanitize_title(title: str) -> str:
    """Strip HTML tags, cap the length and trim whitespace."""
    return _HTML_TAG_RE.sub("", title or "")[:TITLE_MAX_LENGTH].strip()


def default_position(number: int) -> dict[str, float]:
    """Stacked layout: each new instrument 60px below the previous one."""
    return {"x": 20.0, "y": 20.0 + (number - 1) * 60.0}


@dataclass
class SliderWidget:
    """A slider declared in a panel or master source."""

    slider_id: str
    label: str
    value: float
    min: float = 0.0
    max: float = 1.0
    step: float | None = None

    def __post_init__(self):
        if self.step is None:
            self.step = (self.max - self.min) / 1000

    def to_payload(self) -> SliderPayload:
        return SliderPayload(
            slider_id=self.slider_id,
            label=self.label,
            value=self.value,
            min=self.min,
            max=self.max,
            step=self.step,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "slider_id": self.slider_id,
            "label": self.label,
            "value": self.value,
            "min": self.min,
            "max": self.max,
            "step": self.step,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SliderWidget:
        return cls(
            slider_id=data["slider_id"],
            label=data.get("label", data["slider_id"]),
            value=float(data.get("value", 0.0)),
            min=float(data.get("min", 0.0)),
            max=float(data.get("max", 1.0)),
            step=data.get("step"),
        )


@dataclass
class Panel:
    """An independently playable unit of source code.

    ``playing``, ``stale`` and ``last_evaluated_code`` are runtime flags and
    are never persisted.
    """

    id: str
    number: int
    title: str
    source_code: str = ""
    position: dict[str, float] = field(default_factory=dict)
    size: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SIZE))
    z_index: int = 0
    playing: bool = False
    stale: bool = False
    last_evaluated_code: str = ""
    sliders: list[SliderWidget] = field(default_factory=list)

    def flags(self) -> PanelFlags:
        return PanelFlags(panel=self.id, playing=self.playing, stale=self.stale)

    def to_record(self) -> dict[str, Any]:
        """Serialize for the panel store."""
        return {
            "id": self.id,
            "number": self.number,
            "title": self.title,
            "code": self.source_code,
            "position": dict(self.position),
            "size": dict(self.size),
            "z_index": self.z_index,
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> Panel:
        """Restore from the panel store. Restored panels are paused."""
        number = int(data.get("number", 1))
        return cls(
            id=data["id"],
            number=number,
            title=data.get("title") or f"Instrument {number}",
            source_code=data.get("code", ""),
            position=data.get("position") or default_position(number),
            size=data.get("size") or dict(DEFAULT_SIZE),
            z_index=int(data.get("z_index", 0)),
        )


@dataclass
class MasterUnit:
    """The singleton global-control panel."""

    id: str = MASTER_PANEL_ID
    compact: bool = True
    source_code: str = ""
    sliders: list[SliderWidget] = field(default_factory=list)

    def to_record(self) -> dict[str, Any]:
        return {"compact": self.compact, "code": self.source_code}

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> MasterUnit:
        return cls(compact=bool(data.get("compact", True)), source_code=data.get("code", ""))


@dataclass(frozen=True)
class PanelEntry:
    """Frozen view of one panel inside a snapshot."""

    id: str
    title: str
    playing: bool
    stale: bool
    position: tuple[tuple[str, float], ...]

    def to_full_state(self) -> FullStatePanel:
        return FullStatePanel(
            id=self.id,
            title=self.title,
            playing=self.playing,
            stale=self.stale,
            position=dict(self.position),
        )


@dataclass(frozen=True)
class StateSnapshot:
    """Immutable capture of every panel and the master unit."""

    panels: tuple[PanelEntry, ...]
    master_sliders: tuple[SliderWidget, ...]
    master_compact: bool
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    @classmethod
    def capture(cls, panels: list[Panel], master: MasterUnit) -> StateSnapshot:
        return cls(
            panels=tuple(
                PanelEntry(
                    id=p.id,
                    title=p.title,
                    playing=p.playing,
                    stale=p.stale,
                    position=tuple(sorted(p.position.items())),
                )
                for p in panels
            ),
            master_sliders=tuple(replace(s) for s in master.sliders),
            master_compact=master.compact,
        )
