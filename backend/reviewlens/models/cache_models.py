"""Database models for the analysis result cache and progress snapshots."""

from sqlalchemy import BigInteger, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from reviewlens.database import Base


class CachedAnalysis(Base):
    """Cached result of one analysis run."""

    __tablename__ = "cached_analyses"

    id: Mapped[str] = mapped_column(String(300), primary_key=True)  # subject_confighash_timestampms
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    config_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Epoch seconds
    created_at: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    expires_at: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    last_accessed: Mapped[float] = mapped_column(Float, nullable=False, index=True)

    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    review_count: Mapped[int] = mapped_column(Integer, default=0)
    result_json: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<CachedAnalysis {self.id} size={self.size_bytes}>"


class CachedProgress(Base):
    """Progress snapshot of an in-flight run, kept so a reloaded dashboard can redisplay it."""

    __tablename__ = "cached_progress"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # analysis id
    subject_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    progress_json: Mapped[str] = mapped_column(Text, nullable=False)
    config_json: Mapped[str] = mapped_column(Text, nullable=False)


class CacheMetadata(Base):
    """Scalar bookkeeping values, e.g. the running total of cached bytes."""

    __tablename__ = "cache_metadata"

    key: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
