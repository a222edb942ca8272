"""SQLAlchemy ORM models backing the local store."""

from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class HistoryRecord(Base):
    """Last playback position of a video; one row per video id."""

    __tablename__ = "history"

    vod_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    timecode: Mapped[float] = mapped_column(Float, default=0.0)
    duration: Mapped[float] = mapped_column(Float, default=0.0)
    updated_at: Mapped[int] = mapped_column(BigInteger, default=0, index=True)


class WatchlistRecord(Base):
    __tablename__ = "watchlist"

    vod_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(Text, default="")
    preview_thumbnail_url: Mapped[str] = mapped_column(String(512), default="")
    length_seconds: Mapped[int] = mapped_column(Integer, default=0)
    added_at: Mapped[int] = mapped_column(BigInteger, default=0)


class SubRecord(Base):
    """Followed channel, stored with its lowercased login."""

    __tablename__ = "subs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    login: Mapped[str] = mapped_column(String(64), unique=True)
    display_name: Mapped[str] = mapped_column(String(120), default="")
    profile_image_url: Mapped[str] = mapped_column(String(512), default="")


class SettingsRecord(Base):
    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    one_sync: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
