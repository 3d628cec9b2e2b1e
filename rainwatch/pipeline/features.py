"""
Feature Sources — where a cycle gets each area's snapshot.

Fetching and parsing raw radar/model/station data happens upstream; a
source only hands over validated ``AreaSnapshot`` records.
"""

import json
from pathlib import Path
from typing import Iterable, Optional, Protocol

import structlog
from pydantic import TypeAdapter

from rainwatch.schemas.weather import AreaSnapshot

logger = structlog.get_logger(__name__)

_SNAPSHOTS = TypeAdapter(list[AreaSnapshot])


class MissingFeatureDataError(Exception):
    """The area has no usable features this cycle. The area is skipped."""
    pass


class FeatureSource(Protocol):
    async def fetch(self, area_id: str) -> Optional[AreaSnapshot]:
        ...


class StaticFeatureSource:
    """Serves snapshots from memory (tests, replays, JSON drops from ingestion)."""

    def __init__(self, snapshots: Iterable[AreaSnapshot] = ()):
        self._by_area = {s.features.area_id: s for s in snapshots}

    @classmethod
    def from_json_file(cls, path: str | Path) -> "StaticFeatureSource":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        snapshots = _SNAPSHOTS.validate_python(raw)
        logger.info("feature_snapshots_loaded", path=str(path), areas=len(snapshots))
        return cls(snapshots)

    @property
    def area_ids(self) -> list[str]:
        return sorted(self._by_area)

    async def fetch(self, area_id: str) -> Optional[AreaSnapshot]:
        return self._by_area.get(area_id)
