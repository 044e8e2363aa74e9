"""Layout engine: ring placement, manual overrides and overlap resolution.

Beginner terms:
- Primary: the first id in canonical order. It sits at the origin.
- Ring member: every other id without a manual position. Members are spread
  evenly on a circle starting straight up (-90 degrees).
- Manual position: set by a user drag. Never moved by placement or
  resolution; only another drag or `reset` replaces it.
- Footprint: rendered size reported by the renderer. Resolution reads the
  reported table and never measures anything itself.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable

from hub_mirror.layout.geometry import DEFAULT_FOOTPRINT, Footprint, LayoutPosition, resolve_overlaps
from hub_mirror.layout.persistence import InMemoryPositionStore, PositionStore

logger = logging.getLogger(__name__)

REFERENCE_ANGLE_DEG = -90.0


class LayoutEngine:
    def __init__(
        self,
        *,
        store: PositionStore | None = None,
        min_radius: float = 320.0,
        spacing_factor: float = 80.0,
        padding_x: float = 20.0,
        padding_y: float = 10.0,
        passes: int = 3,
        default_footprint: Footprint = DEFAULT_FOOTPRINT,
    ) -> None:
        self.store = store or InMemoryPositionStore()
        self.min_radius = min_radius
        self.spacing_factor = spacing_factor
        self.padding_x = padding_x
        self.padding_y = padding_y
        self.passes = passes
        self.default_footprint = default_footprint
        self._positions: dict[str, LayoutPosition] = {}
        self._footprints: dict[str, Footprint] = {}
        self._drag_revisions: dict[str, int] = {}
        self._order: list[str] = []
        for entity_id, position in self.store.load().items():
            self._positions[entity_id] = LayoutPosition(position.x, position.y, position.z, manual=True)
        if self._positions:
            logger.info("layout event=manual_loaded count=%s", len(self._positions))

    def place(self, ids: Iterable[str]) -> dict[str, LayoutPosition]:
        """Give every id a position, disturbing already placed ids as little as possible.

        The first call for a set lays out the whole ring. Later calls only
        place ids that have no position yet, at their slot on the ring for the
        current set, then resolve overlaps with every existing position pinned.
        """
        ordered = self._remember(ids)
        if not ordered:
            return {}
        new_ids = [entity_id for entity_id in ordered if entity_id not in self._positions]
        if not new_ids:
            return self.positions(ordered)
        has_computed = any(
            entity_id in self._positions and not self._positions[entity_id].manual for entity_id in ordered
        )
        if not has_computed:
            return self.relayout(ordered)

        slots = self.ring_positions(ordered)
        for entity_id in new_ids:
            self._positions[entity_id] = slots.get(entity_id, LayoutPosition(0.0, 0.0))
        pinned = [entity_id for entity_id in ordered if entity_id not in new_ids]
        self._apply_resolution(ordered, pinned)
        logger.debug("layout event=placed new=%s", new_ids)
        return self.positions(ordered)

    def relayout(self, ids: Iterable[str]) -> dict[str, LayoutPosition]:
        """Recompute ring positions for every non-manual id and resolve."""
        ordered = self._remember(ids)
        if not ordered:
            return {}
        self._positions.update(self.ring_positions(ordered))
        self._apply_resolution(ordered, self._manual_ids(ordered))
        return self.positions(ordered)

    def ring_positions(self, ids: Iterable[str]) -> dict[str, LayoutPosition]:
        """Deterministic initial placement for `ids` in order; manual ids are skipped."""
        ordered = list(dict.fromkeys(ids))
        result: dict[str, LayoutPosition] = {}
        if not ordered:
            return result
        primary, rest = ordered[0], ordered[1:]
        if not self.is_manual(primary):
            result[primary] = LayoutPosition(0.0, 0.0)
        members = [entity_id for entity_id in rest if not self.is_manual(entity_id)]
        if not members:
            return result
        radius = max(self.min_radius, len(members) * self.spacing_factor)
        for index, entity_id in enumerate(members):
            angle = math.radians(REFERENCE_ANGLE_DEG + 360.0 * index / len(members))
            result[entity_id] = LayoutPosition(
                round(radius * math.cos(angle), 6),
                round(radius * math.sin(angle), 6),
            )
        return result

    def report_footprint(self, entity_id: str, width: float, height: float) -> Footprint:
        footprint = Footprint(width=width, height=height)
        self._footprints[entity_id] = footprint
        return footprint

    def footprint(self, entity_id: str) -> Footprint:
        return self._footprints.get(entity_id, self.default_footprint)

    def footprints(self) -> dict[str, Footprint]:
        return dict(self._footprints)

    def resolve(self, ids: Iterable[str] | None = None) -> dict[str, LayoutPosition]:
        """Re-run overlap resolution, typically after new footprints were reported."""
        ordered = self._order if ids is None else self._remember(ids)
        self._apply_resolution(ordered, self._manual_ids(ordered))
        return self.positions(ordered)

    def drag(self, entity_id: str, x: float, y: float, z: float | None = None) -> LayoutPosition:
        """Pin `entity_id` where the user dropped it and persist the override."""
        self._remember([entity_id])
        position = LayoutPosition(x=x, y=y, z=z, manual=True)
        self._positions[entity_id] = position
        self._drag_revisions[entity_id] = self._drag_revisions.get(entity_id, 0) + 1
        self.store.save(entity_id, position)
        logger.info("layout event=drag id=%s x=%s y=%s", entity_id, x, y)
        self._apply_resolution(self._order, self._manual_ids(self._order))
        return position

    def drag_revision(self, entity_id: str) -> int:
        return self._drag_revisions.get(entity_id, 0)

    def restore(self, entity_id: str, position: LayoutPosition) -> None:
        """Put back a previously captured position without touching the store."""
        self._positions[entity_id] = position

    def reset(self, ids: Iterable[str] | None = None) -> dict[str, LayoutPosition]:
        """Forget every manual position and lay the set out from scratch."""
        ordered = list(self._order) if ids is None else list(dict.fromkeys(ids))
        self.store.clear()
        self._positions.clear()
        logger.info("layout event=reset count=%s", len(ordered))
        return self.relayout(ordered)

    def is_manual(self, entity_id: str) -> bool:
        position = self._positions.get(entity_id)
        return position is not None and position.manual

    def position(self, entity_id: str) -> LayoutPosition | None:
        return self._positions.get(entity_id)

    def positions(self, ids: Iterable[str] | None = None) -> dict[str, LayoutPosition]:
        if ids is None:
            return dict(self._positions)
        return {entity_id: self._positions[entity_id] for entity_id in ids if entity_id in self._positions}

    def _apply_resolution(self, ordered: list[str], pinned: Iterable[str]) -> None:
        resolved = resolve_overlaps(
            ordered,
            self._positions,
            self._footprints,
            pinned=pinned,
            passes=self.passes,
            pad_x=self.padding_x,
            pad_y=self.padding_y,
            default_footprint=self.default_footprint,
        )
        self._positions.update(resolved)

    def _manual_ids(self, ordered: Iterable[str]) -> list[str]:
        return [entity_id for entity_id in ordered if self.is_manual(entity_id)]

    def _remember(self, ids: Iterable[str]) -> list[str]:
        ordered = list(dict.fromkeys(ids))
        known = set(self._order)
        self._order.extend(entity_id for entity_id in ordered if entity_id not in known)
        return ordered
