"""Focus/unfocus state machine for the detail sub-graph.

Beginner terms:
- Focus token: a counter bumped on every focus and unfocus. A detail fetch
  only applies if the token it started with is still current, so a late
  answer for an entity the user already left is discarded.
- Captured position: where the focused entity stood when expansion began.
  Collapsing puts it back there unless the user dragged it meanwhile.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from enum import Enum

from hub_mirror.expansion.detail import DetailFetcher, DetailFetchError
from hub_mirror.expansion.satellites import Satellite, build_satellites, stack_columns
from hub_mirror.layout.engine import LayoutEngine
from hub_mirror.layout.geometry import Footprint, LayoutPosition
from hub_mirror.store.base import EntityStore

logger = logging.getLogger(__name__)


class ExpansionState(str, Enum):
    COLLAPSED = "collapsed"
    EXPANDING = "expanding"
    EXPANDED = "expanded"
    COLLAPSING = "collapsing"


class DetailExpansionController:
    def __init__(
        self,
        *,
        store: EntityStore,
        layout: LayoutEngine,
        fetch_detail: DetailFetcher,
        detail_timeout_s: float = 15.0,
        column_gap: float = 380.0,
        min_column_gap: float = 60.0,
        stack_gap: float = 16.0,
        satellite_footprints: dict[str, Footprint] | None = None,
    ) -> None:
        self.store = store
        self.layout = layout
        self.detail_timeout_s = detail_timeout_s
        self.column_gap = column_gap
        self.min_column_gap = min_column_gap
        self.stack_gap = stack_gap
        self._fetch_detail = fetch_detail
        self._satellite_footprints = satellite_footprints
        self._state = ExpansionState.COLLAPSED
        self._token = 0
        self._focused_id: str | None = None
        self._captured: LayoutPosition | None = None
        self._captured_revision = 0
        self._satellites: list[Satellite] = []

    @property
    def state(self) -> ExpansionState:
        return self._state

    @property
    def focused_id(self) -> str | None:
        return self._focused_id

    @property
    def captured_position(self) -> LayoutPosition | None:
        return self._captured

    async def focus(self, entity_id: str) -> list[Satellite] | None:
        """Expand `entity_id` into satellites.

        Returns the satellites, or None when a newer focus/unfocus superseded
        this call while the fetch was in flight. Raises DetailFetchError when
        the fetch fails or times out; the controller is collapsed by then.
        """
        if self._state is ExpansionState.EXPANDED and self._focused_id == entity_id:
            return self.satellites()
        if self._state is not ExpansionState.COLLAPSED:
            self.unfocus()

        self._token += 1
        token = self._token
        self._focused_id = entity_id
        self._captured = self.layout.position(entity_id)
        self._captured_revision = self.layout.drag_revision(entity_id)
        self._set_state(ExpansionState.EXPANDING)

        try:
            bundle = await asyncio.wait_for(self._fetch_detail(entity_id), timeout=self.detail_timeout_s)
        except asyncio.CancelledError:
            if token == self._token:
                self._collapse()
            raise
        except Exception as exc:  # noqa: BLE001
            if token != self._token:
                logger.info("expansion event=stale_failure id=%s", entity_id)
                return None
            self._collapse()
            if isinstance(exc, DetailFetchError):
                raise
            if isinstance(exc, asyncio.TimeoutError):
                raise DetailFetchError(
                    f"detail fetch for {entity_id} timed out after {self.detail_timeout_s}s"
                ) from exc
            logger.warning("expansion event=fetch_failed id=%s error=%r", entity_id, exc)
            raise DetailFetchError(f"detail fetch for {entity_id} failed: {exc}") from exc

        if token != self._token:
            logger.info("expansion event=stale_result id=%s", entity_id)
            return None

        fallback = [
            conn.model_dump(by_alias=True, exclude_none=True) for conn in self.store.connections_for(entity_id)
        ]
        satellites = build_satellites(
            entity_id,
            bundle,
            fallback_connections=fallback,
            footprints=self._satellite_footprints,
        )
        self._satellites = self._stack(satellites, start=1)
        self._set_state(ExpansionState.EXPANDED)
        logger.info("expansion event=expanded id=%s satellites=%s", entity_id, len(self._satellites))
        return self.satellites()

    def unfocus(self) -> None:
        """Discard satellites and restore the focused entity's captured position."""
        if self._state is ExpansionState.COLLAPSED:
            return
        self._token += 1
        self._set_state(ExpansionState.COLLAPSING)
        self._collapse()

    def resize_satellite(self, satellite_id: str, width: float, height: float) -> list[Satellite]:
        """Record a new rendered size and re-flow its column and every column to the right."""
        for index, satellite in enumerate(self._satellites):
            if satellite.id == satellite_id:
                break
        else:
            raise KeyError(satellite_id)
        self._satellites[index] = replace(satellite, footprint=Footprint(width=width, height=height))
        return self.relayout_columns(start=satellite.column)

    def relayout_columns(self, start: int = 1) -> list[Satellite]:
        if self._state is not ExpansionState.EXPANDED:
            return []
        self._satellites = self._stack(self._satellites, start=start)
        return self.satellites()

    def satellites(self) -> list[Satellite]:
        return list(self._satellites)

    def links(self) -> list[tuple[str, str]]:
        """Edges for rendering: focus to first column, then column k to column k+1."""
        if self._focused_id is None or not self._satellites:
            return []
        columns: dict[int, list[str]] = {}
        for satellite in self._satellites:
            columns.setdefault(satellite.column, []).append(satellite.id)
        ordered = [columns[k] for k in sorted(columns)]
        edges = [(self._focused_id, sat_id) for sat_id in ordered[0]]
        for left, right in zip(ordered, ordered[1:]):
            edges.extend((source, target) for source in left for target in right)
        return edges

    def _stack(self, satellites: list[Satellite], *, start: int) -> list[Satellite]:
        anchor = self._captured or LayoutPosition(0.0, 0.0)
        return stack_columns(
            satellites,
            anchor,
            self.layout.footprint(self._focused_id or ""),
            start=start,
            column_gap=self.column_gap,
            min_column_gap=self.min_column_gap,
            stack_gap=self.stack_gap,
            passes=self.layout.passes,
            pad_x=self.layout.padding_x,
            pad_y=self.layout.padding_y,
        )

    def _collapse(self) -> None:
        focused, captured = self._focused_id, self._captured
        self._satellites = []
        if (
            focused is not None
            and captured is not None
            and self.layout.drag_revision(focused) == self._captured_revision
        ):
            self.layout.restore(focused, captured)
        self._focused_id = None
        self._captured = None
        self._set_state(ExpansionState.COLLAPSED)

    def _set_state(self, state: ExpansionState) -> None:
        if state is not self._state:
            logger.debug("expansion event=state from=%s to=%s", self._state.value, state.value)
            self._state = state
