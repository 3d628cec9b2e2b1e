"""
Record stores. Everything but the per-day forecast is append-only.

Each call runs in its own short transaction and commits before returning,
so a row written by one decision is visible to the next one in the same
cycle and survives a crash right after it.
"""

import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rainwatch.alerting.schemas import PostStatus, TweetLogEntry
from rainwatch.db.models import Alert, ForecastDaily, Observation, TweetLog
from rainwatch.schemas.weather import (
    AlertSnapshot,
    DailyForecastSnapshot,
    IntensityBucket,
    ObservationSnapshot,
    Scope,
    Severity,
)

logger = structlog.get_logger(__name__)


class TweetLogRepository:
    """Durable notification log (create / most recent by area / count since)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, entry: TweetLogEntry) -> TweetLogEntry:
        async with self.session_factory() as db:
            db.add(TweetLog(
                area_id=entry.area_id,
                scope=str(entry.scope),
                bucket=str(entry.bucket),
                window_label=entry.window_label,
                window_start=entry.window_start,
                window_end=entry.window_end,
                hash=entry.hash,
                status=str(entry.status),
                external_post_id=entry.external_post_id,
                text=entry.text,
                created_at=entry.created_at,
            ))
            await db.commit()
        return entry

    async def find_most_recent_by_area(self, area_id: str) -> Optional[TweetLogEntry]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(TweetLog)
                .where(TweetLog.area_id == area_id)
                .order_by(TweetLog.created_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
        return _to_entry(row) if row is not None else None

    async def count_since(self, since: datetime) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count()).select_from(TweetLog).where(TweetLog.created_at >= since)
            )
            return int(result.scalar_one())


def _to_entry(row: TweetLog) -> TweetLogEntry:
    return TweetLogEntry(
        area_id=row.area_id,
        scope=Scope(row.scope),
        bucket=IntensityBucket(row.bucket),
        window_label=row.window_label,
        window_start=row.window_start,
        window_end=row.window_end,
        hash=row.hash,
        external_post_id=row.external_post_id,
        status=PostStatus(row.status),
        text=row.text,
        created_at=row.created_at,
    )


class ObservationRepository:
    """Observations and the alert snapshots they own."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save_observation(self, snapshot: ObservationSnapshot) -> uuid.UUID:
        async with self.session_factory() as db:
            row_id = uuid.uuid4()
            db.add(Observation(
                id=row_id,
                area_id=snapshot.area_id,
                cycle_id=snapshot.cycle_id,
                observed_at=snapshot.observed_at,
                precip_hour=snapshot.precip_hour,
                probability=snapshot.probability,
                intensity_class=str(snapshot.intensity_class),
                radar_eta_min=snapshot.radar_eta_min,
                radar_duration_min=snapshot.radar_duration_min,
                radar_intensity=str(snapshot.radar_intensity),
                now_prob=snapshot.now_prob,
                max_prob_12h=snapshot.max_prob_12h,
                sum_precip_12h=snapshot.sum_precip_12h,
                three_hour_total_mm=snapshot.three_hour_total_mm,
                peak_hour=snapshot.peak_hour,
                stale_sources=list(snapshot.stale_sources),
            ))
            await db.commit()
        return row_id

    async def save_alert(self, observation_id: uuid.UUID, alert: AlertSnapshot) -> uuid.UUID:
        async with self.session_factory() as db:
            row_id = uuid.uuid4()
            db.add(Alert(
                id=row_id,
                observation_id=observation_id,
                area_id=alert.area_id,
                scope=str(alert.scope),
                issued_at=alert.issued_at,
                window_start=alert.window.start,
                window_end=alert.window.end,
                severity=str(alert.severity),
                confidence=alert.confidence,
                labels=[str(label) for label in alert.labels],
                sources=[str(source) for source in alert.sources],
                text_en=alert.text_en,
                text_te=alert.text_te,
            ))
            await db.commit()
        return row_id


    async def upsert_daily_forecasts(self, forecasts: list[DailyForecastSnapshot]) -> int:
        """
        Write per-day outlook rows, one per (area, day).

        An existing row for the same area and day is overwritten in place;
        a new day is inserted. All rows commit together.
        """
        if not forecasts:
            return 0

        async with self.session_factory() as db:
            for forecast in forecasts:
                result = await db.execute(
                    select(ForecastDaily).where(
                        and_(
                            ForecastDaily.area_id == forecast.area_id,
                            ForecastDaily.day == forecast.day,
                        )
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = ForecastDaily(area_id=forecast.area_id, day=forecast.day)
                    db.add(row)
                row.precipitation_sum = forecast.precipitation_sum
                row.probability_max = forecast.probability_max
                row.temperature_max = forecast.temperature_max
                row.temperature_min = forecast.temperature_min
                row.severity = str(forecast.severity)
                row.confidence = forecast.confidence
                row.text_en = forecast.text_en
                row.text_te = forecast.text_te
                row.updated_at = forecast.updated_at
            await db.commit()

        logger.info(
            "daily_forecasts_upserted",
            area_id=forecasts[0].area_id,
            count=len(forecasts),
        )
        return len(forecasts)

    async def list_daily_forecasts(self, area_id: str) -> list[DailyForecastSnapshot]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(ForecastDaily)
                .where(ForecastDaily.area_id == area_id)
                .order_by(ForecastDaily.day)
            )
            rows = result.scalars().all()
        return [
            DailyForecastSnapshot(
                area_id=row.area_id,
                day=row.day,
                precipitation_sum=row.precipitation_sum,
                probability_max=row.probability_max,
                temperature_max=row.temperature_max,
                temperature_min=row.temperature_min,
                severity=Severity(row.severity),
                confidence=row.confidence,
                text_en=row.text_en,
                text_te=row.text_te,
                updated_at=row.updated_at,
            )
            for row in rows
        ]
