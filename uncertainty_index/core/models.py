"""
SQLAlchemy models for the ingestion audit trail and approval workflow.

Every monthly ingest writes one IngestRun plus one SourceValue per survey
source. Release schedules and source statistics are long-lived rows keyed
by source name.
"""
from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship
import enum

Base = declarative_base()


class IngestRunStatus(str, enum.Enum):
    """Run status - a run is optimistic until an orchestration error occurs."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class SourceStatus(str, enum.Enum):
    """Per-source outcome of a run (also used by adapter results)."""
    SUCCESS = "success"
    MISSING = "missing"
    FAILED = "failed"
    WARNING = "warning"
    MISSING_HEADER = "MISSING_HEADER"


class ApprovalStatus(str, enum.Enum):
    """Human review state of a source value."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class IngestRun(Base):
    """
    One invocation of the monthly ingest for a month label (e.g. "Feb 2026").

    Immutable once finalized except for status/message/finished_at.
    """
    __tablename__ = "ingest_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    month = Column(String(20), nullable=False, index=True)
    status = Column(
        Enum(IngestRunStatus, native_enum=False, length=20),
        nullable=False,
        default=IngestRunStatus.SUCCESS,
        index=True
    )

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    finished_at = Column(DateTime, nullable=True)

    # Aggregated warnings or the verbatim orchestration error
    message = Column(Text, nullable=True)

    sources = relationship(
        "SourceValue",
        back_populates="ingest_run",
        order_by="SourceValue.source_name",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return (
            f"<IngestRun(id={self.id}, month={self.month}, "
            f"status={self.status}, started_at={self.started_at})>"
        )


class SourceValue(Base):
    """
    One source's resolved observation for one ingest run.

    Only the approval workflow mutates a row after creation.
    """
    __tablename__ = "source_values"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ingest_run_id = Column(
        Integer, ForeignKey("ingest_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_name = Column(String(255), nullable=False, index=True)
    source_url = Column(Text, nullable=False)

    value = Column(Float, nullable=True)
    previous_value = Column(Float, nullable=True)
    delta = Column(Float, nullable=True)
    status = Column(
        Enum(SourceStatus, native_enum=False, length=20),
        nullable=False,
        default=SourceStatus.SUCCESS
    )
    carried_forward = Column(Boolean, nullable=False, default=False)
    value_date = Column(Date, nullable=True)
    message = Column(Text, nullable=True)

    # Approval
    approval_status = Column(
        Enum(ApprovalStatus, native_enum=False, length=20),
        nullable=False,
        default=ApprovalStatus.PENDING,
        index=True
    )
    approval_note = Column(Text, nullable=True)
    approved_by = Column(String(255), nullable=True)
    approved_at = Column(DateTime, nullable=True)

    ingest_run = relationship("IngestRun", back_populates="sources")

    def __repr__(self) -> str:
        return (
            f"<SourceValue(id={self.id}, source_name='{self.source_name}', "
            f"value={self.value}, status={self.status}, "
            f"approval_status={self.approval_status})>"
        )


class SourceReleaseSchedule(Base):
    """
    Next expected publication date for a source.

    advance_months is the cadence (1 monthly, 3 quarterly).
    """
    __tablename__ = "source_release_schedules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_name = Column(String(255), nullable=False, unique=True, index=True)
    advance_months = Column(Integer, nullable=False, default=1)
    next_expected_release_date = Column(Date, nullable=False)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return (
            f"<SourceReleaseSchedule(source_name='{self.source_name}', "
            f"advance_months={self.advance_months}, "
            f"next_expected_release_date={self.next_expected_release_date})>"
        )


class SourceStatistic(Base):
    """
    Historical mean/stdev and index weight per source.

    Keyed by the ledger header; mirrored from the ledger's Meta tab.
    """
    __tablename__ = "source_statistics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_name = Column(String(255), nullable=False, unique=True, index=True)
    weight = Column(Float, nullable=True)
    mean = Column(Float, nullable=True)
    stdev = Column(Float, nullable=True)
    direction = Column(String(50), nullable=True)

    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return (
            f"<SourceStatistic(source_name='{self.source_name}', "
            f"mean={self.mean}, stdev={self.stdev}, weight={self.weight})>"
        )
