# backend/sitereport/db/models.py

import datetime
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC).replace(tzinfo=None)


class ReportRow(Base):
    __tablename__ = "reports"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id = Column(Uuid, nullable=False, index=True)
    report_type = Column(String, nullable=False)
    title = Column(String)
    content = Column(JSONDocument, nullable=False)
    project_snapshot = Column(JSONDocument)
    generated_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    generated_by = Column(String)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    is_archived = Column(Boolean, default=False, nullable=False)

    photos = relationship(
        "ReportPhotoLink",
        back_populates="report",
        cascade="all, delete-orphan",
        order_by="ReportPhotoLink.display_order",
    )
    milestones = relationship(
        "ReportMilestoneLink",
        back_populates="report",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<ReportRow(id='{self.id}', report_type='{self.report_type}')>"


class ReportPhotoLink(Base):
    __tablename__ = "report_photos"
    __table_args__ = (UniqueConstraint("report_id", "photo_id", name="uq_report_photos_report_photo"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    report_id = Column(Uuid, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    photo_id = Column(String, nullable=False)
    photo_role = Column(String, nullable=False)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)

    report = relationship("ReportRow", back_populates="photos")

    def __repr__(self):
        return f"<ReportPhotoLink(photo_id='{self.photo_id}', role='{self.photo_role}')>"


class ReportMilestoneLink(Base):
    __tablename__ = "report_milestones"
    __table_args__ = (
        UniqueConstraint("report_id", "milestone_id", name="uq_report_milestones_report_milestone"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    report_id = Column(Uuid, ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True)
    milestone_id = Column(String, nullable=False)
    status = Column(String)
    created_at = Column(DateTime, default=utcnow)

    report = relationship("ReportRow", back_populates="milestones")

    def __repr__(self):
        return f"<ReportMilestoneLink(milestone_id='{self.milestone_id}', status='{self.status}')>"
