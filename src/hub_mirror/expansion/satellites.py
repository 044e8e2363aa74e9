"""Satellite nodes for an expanded entity and their column layout.

Columns are numbered from 1 and read left to right from the focused entity:
files, then sessions and connections, then memory, workspace and statistics.
Empty categories are omitted and empty columns collapse so numbering stays
consecutive.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any, Literal

from hub_mirror.expansion.detail import DetailBundle
from hub_mirror.layout.geometry import Footprint, LayoutPosition, resolve_overlaps

SatelliteKind = Literal["file", "sessions", "connections", "memory", "workspace", "statistics"]

DEFAULT_SATELLITE_FOOTPRINTS: dict[str, Footprint] = {
    "file": Footprint(240.0, 40.0),
    "sessions": Footprint(300.0, 200.0),
    "connections": Footprint(300.0, 160.0),
    "memory": Footprint(300.0, 200.0),
    "workspace": Footprint(260.0, 180.0),
    "statistics": Footprint(220.0, 120.0),
}


@dataclass(frozen=True)
class Satellite:
    id: str
    kind: SatelliteKind
    column: int
    data: Any
    footprint: Footprint
    position: LayoutPosition = LayoutPosition(0.0, 0.0)


def build_satellites(
    focus_id: str,
    bundle: DetailBundle,
    *,
    fallback_connections: Sequence[Mapping[str, Any]] = (),
    footprints: Mapping[str, Footprint] | None = None,
) -> list[Satellite]:
    sizes = {**DEFAULT_SATELLITE_FOOTPRINTS, **(footprints or {})}

    def make(suffix: str, kind: SatelliteKind, data: Any) -> tuple[str, SatelliteKind, Any]:
        return (f"{focus_id}:{suffix}", kind, data)

    files = [
        make(f"file:{key}", "file", {"key": key, "content": content})
        for key, content in bundle.present_files().items()
    ]
    activity = []
    if bundle.sessions:
        activity.append(make("sessions", "sessions", list(bundle.sessions)))
    connections = list(bundle.connections) or [dict(item) for item in fallback_connections]
    if connections:
        activity.append(make("connections", "connections", connections))
    context = []
    if bundle.recent_memories:
        context.append(make("memory", "memory", [m.model_dump() for m in bundle.recent_memories]))
    if bundle.workspace_files:
        context.append(
            make(
                "workspace",
                "workspace",
                {"root": bundle.workspace, "entries": [e.model_dump() for e in bundle.workspace_files]},
            )
        )
    if bundle.stats is not None:
        context.append(make("statistics", "statistics", bundle.stats.model_dump(by_alias=True)))

    satellites: list[Satellite] = []
    column = 0
    for group in (files, activity, context):
        if not group:
            continue
        column += 1
        satellites.extend(
            Satellite(id=sat_id, kind=kind, column=column, data=data, footprint=sizes[kind])
            for sat_id, kind, data in group
        )
    return satellites


def stack_columns(
    satellites: Sequence[Satellite],
    anchor: LayoutPosition,
    anchor_footprint: Footprint,
    *,
    start: int = 1,
    column_gap: float = 380.0,
    min_column_gap: float = 60.0,
    stack_gap: float = 16.0,
    passes: int = 3,
    pad_x: float = 20.0,
    pad_y: float = 10.0,
) -> list[Satellite]:
    """Position columns `start` and later; earlier columns keep their positions.

    Column k sits at `column_gap * k` right of the anchor, or further when the
    previous column is wide, so it always clears the previous column's right
    edge by `min_column_gap`. Each column is stacked vertically and centered
    on the anchor's vertical center.
    """
    by_column: dict[int, list[Satellite]] = {}
    for satellite in satellites:
        by_column.setdefault(satellite.column, []).append(satellite)
    placed = {satellite.id: satellite for satellite in satellites}

    if start <= 1:
        previous_right = anchor.x + anchor_footprint.width
    else:
        previous = by_column.get(start - 1, [])
        previous_right = max(
            (s.position.x + s.footprint.width for s in previous),
            default=anchor.x + anchor_footprint.width,
        )
    center_y = anchor.y + anchor_footprint.height / 2.0

    for column in sorted(k for k in by_column if k >= start):
        members = by_column[column]
        x = max(anchor.x + column_gap * column, previous_right + min_column_gap)
        total = sum(s.footprint.height for s in members) + stack_gap * (len(members) - 1)
        y = center_y - total / 2.0
        for satellite in members:
            placed[satellite.id] = replace(satellite, position=LayoutPosition(x, y))
            y += satellite.footprint.height + stack_gap
        previous_right = x + max(s.footprint.width for s in members)

    order = [satellite.id for satellite in satellites]
    resolved = resolve_overlaps(
        order,
        {sat_id: s.position for sat_id, s in placed.items()},
        {sat_id: s.footprint for sat_id, s in placed.items()},
        pinned=[s.id for s in satellites if s.column < start],
        passes=passes,
        pad_x=pad_x,
        pad_y=pad_y,
    )
    return [replace(placed[sat_id], position=resolved[sat_id]) for sat_id in order]
