"""Positions, footprints and greedy overlap resolution.

Positions are the top-left corner of an entity's footprint. Each entity
occupies a padded box `(x, y, width + pad_x, height + pad_y)`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace

logger = logging.getLogger(__name__)

# Float pushes can leave a sliver of overlap; anything below this is touching.
OVERLAP_EPSILON = 1e-6


@dataclass(frozen=True)
class LayoutPosition:
    x: float
    y: float
    z: float | None = None
    manual: bool = False

    def moved(self, dx: float = 0.0, dy: float = 0.0) -> LayoutPosition:
        return replace(self, x=self.x + dx, y=self.y + dy)

    def as_dict(self) -> dict[str, float]:
        data = {"x": self.x, "y": self.y}
        if self.z is not None:
            data["z"] = self.z
        return data


@dataclass(frozen=True)
class Footprint:
    width: float = 160.0
    height: float = 80.0

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"footprint must be positive, got {self.width}x{self.height}")


DEFAULT_FOOTPRINT = Footprint()


@dataclass(frozen=True)
class Box:
    left: float
    top: float
    right: float
    bottom: float

    @classmethod
    def padded(cls, position: LayoutPosition, footprint: Footprint, pad_x: float, pad_y: float) -> Box:
        return cls(
            left=position.x,
            top=position.y,
            right=position.x + footprint.width + pad_x,
            bottom=position.y + footprint.height + pad_y,
        )

    def overlap(self, other: Box) -> tuple[float, float]:
        """Overlap extent on each axis; either value <= 0 means no intersection."""
        return (
            min(self.right, other.right) - max(self.left, other.left),
            min(self.bottom, other.bottom) - max(self.top, other.top),
        )

    def intersects(self, other: Box) -> bool:
        overlap_x, overlap_y = self.overlap(other)
        return overlap_x > OVERLAP_EPSILON and overlap_y > OVERLAP_EPSILON


def resolve_overlaps(
    order: Iterable[str],
    positions: Mapping[str, LayoutPosition],
    footprints: Mapping[str, Footprint],
    *,
    pinned: Iterable[str] = (),
    passes: int = 3,
    pad_x: float = 20.0,
    pad_y: float = 10.0,
    default_footprint: Footprint = DEFAULT_FOOTPRINT,
) -> dict[str, LayoutPosition]:
    """Nudge intersecting padded boxes apart and return the new positions.

    Each pass visits every unordered pair in `order`. For an intersecting
    pair the smaller axis overlap is the push; the entity further along that
    axis moves forward by exactly the push. A pinned entity never moves: its
    partner moves backward by the same amount instead, and two pinned
    entities are left as they are. Stops early after a pass with no
    movement. Ids in `order` without a position are ignored.
    """
    ids = [entity_id for entity_id in dict.fromkeys(order) if entity_id in positions]
    result = {entity_id: positions[entity_id] for entity_id in ids}
    fixed = set(pinned)

    for pass_index in range(passes):
        moved = False
        for i, first in enumerate(ids):
            for second in ids[i + 1 :]:
                if first in fixed and second in fixed:
                    continue
                a, b = result[first], result[second]
                box_a = Box.padded(a, footprints.get(first, default_footprint), pad_x, pad_y)
                box_b = Box.padded(b, footprints.get(second, default_footprint), pad_x, pad_y)
                if not box_a.intersects(box_b):
                    continue
                overlap_x, overlap_y = box_a.overlap(box_b)
                horizontal = overlap_x < overlap_y
                push = overlap_x if horizontal else overlap_y
                a_coord, b_coord = (a.x, b.x) if horizontal else (a.y, b.y)
                mover, other = (second, first) if a_coord <= b_coord else (first, second)
                if mover in fixed:
                    mover, push = other, -push
                result[mover] = result[mover].moved(dx=push) if horizontal else result[mover].moved(dy=push)
                moved = True
        if not moved:
            break
        logger.debug("layout event=resolve_pass index=%s", pass_index)
    return result


def overlapping_pairs(
    positions: Mapping[str, LayoutPosition],
    footprints: Mapping[str, Footprint],
    *,
    pad_x: float = 20.0,
    pad_y: float = 10.0,
    default_footprint: Footprint = DEFAULT_FOOTPRINT,
) -> list[tuple[str, str]]:
    ids = list(positions)
    boxes = {
        entity_id: Box.padded(positions[entity_id], footprints.get(entity_id, default_footprint), pad_x, pad_y)
        for entity_id in ids
    }
    return [
        (first, second)
        for i, first in enumerate(ids)
        for second in ids[i + 1 :]
        if boxes[first].intersects(boxes[second])
    ]
