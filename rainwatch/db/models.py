"""
Rainwatch SQLAlchemy Models.

Three append-only tables, where rows are inserted and never updated or deleted:
- rw_observations: derived per-area aggregates, one per (area, cycle)
- rw_alerts: alert snapshots owned by an observation
- rw_tweet_log: every notification decision that reached publishing

rw_forecast_daily holds one row per (area, day) and is overwritten each cycle.

The notification log is the only source of truth for cooldown, escalation
and hourly rate checks.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rainwatch.db.compat import GUID, JSONType, UTCDateTime
from rainwatch.db.engine import Base


def _genuuid():
    return uuid.uuid4()


class Observation(Base):
    __tablename__ = "rw_observations"
    __table_args__ = (
        Index("ix_observations_area_observed", "area_id", "observed_at"),
        Index("ix_observations_cycle", "cycle_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    area_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cycle_id: Mapped[str] = mapped_column(String(64), nullable=False)
    observed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    precip_hour: Mapped[Optional[float]] = mapped_column(Float)
    probability: Mapped[Optional[float]] = mapped_column(Float)
    intensity_class: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    radar_eta_min: Mapped[Optional[int]] = mapped_column(Integer)
    radar_duration_min: Mapped[Optional[int]] = mapped_column(Integer)
    radar_intensity: Mapped[str] = mapped_column(String(20), nullable=False, default="none")

    # 12h outlook
    now_prob: Mapped[Optional[float]] = mapped_column(Float)
    max_prob_12h: Mapped[Optional[float]] = mapped_column(Float)
    sum_precip_12h: Mapped[Optional[float]] = mapped_column(Float)
    three_hour_total_mm: Mapped[Optional[float]] = mapped_column(Float)
    peak_hour: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    stale_sources: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)

    alerts: Mapped[list["Alert"]] = relationship(back_populates="observation")


class Alert(Base):
    """Alert snapshot — immutable record of what the rule engine concluded."""

    __tablename__ = "rw_alerts"
    __table_args__ = (
        Index("ix_alerts_area_issued", "area_id", "issued_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    observation_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("rw_observations.id"), nullable=False
    )
    area_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scope: Mapped[str] = mapped_column(String(10), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    window_start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    window_end: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    labels: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    sources: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    text_en: Mapped[str] = mapped_column(Text, nullable=False, default="")
    text_te: Mapped[str] = mapped_column(Text, nullable=False, default="")

    observation: Mapped[Observation] = relationship(back_populates="alerts")


class TweetLog(Base):
    __tablename__ = "rw_tweet_log"
    __table_args__ = (
        Index("ix_tweet_log_area_created", "area_id", "created_at"),
        Index("ix_tweet_log_created", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    area_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scope: Mapped[str] = mapped_column(String(10), nullable=False)
    bucket: Mapped[str] = mapped_column(String(20), nullable=False)
    window_label: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    window_start: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    window_end: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    hash: Mapped[str] = mapped_column(String(40), nullable=False)
    # posted | dry_run | failed
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    external_post_id: Mapped[Optional[str]] = mapped_column(String(64))
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class ForecastDaily(Base):
    __tablename__ = "rw_forecast_daily"
    __table_args__ = (
        UniqueConstraint("area_id", "day", name="uq_forecast_daily_area_day"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    area_id: Mapped[str] = mapped_column(String(64), nullable=False)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    precipitation_sum: Mapped[Optional[float]] = mapped_column(Float)
    probability_max: Mapped[Optional[float]] = mapped_column(Float)
    temperature_max: Mapped[Optional[float]] = mapped_column(Float)
    temperature_min: Mapped[Optional[float]] = mapped_column(Float)
    severity: Mapped[str] = mapped_column(String(10), nullable=False, default="info")
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    text_en: Mapped[str] = mapped_column(Text, nullable=False, default="")
    text_te: Mapped[str] = mapped_column(Text, nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
