"""Audit job model for website health audits."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class AuditJob(Base):
    """One website health audit and its category results."""

    __tablename__ = "audit_jobs"
    __table_args__ = (
        Index("ix_audit_jobs_owner_created", "owner_id", "created_at"),
        Index("ix_audit_jobs_public_created", "is_public", "created_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String, ForeignKey("users.id"), nullable=True)
    url = Column(String, nullable=False)
    domain = Column(String, nullable=False, index=True)
    device_type = Column(String, nullable=False, default="desktop")  # desktop, mobile
    location = Column(String, nullable=False, default="us")
    is_public = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, default="pending", index=True)  # pending, processing, completed, failed

    performance = Column(JSON, nullable=True)
    seo = Column(JSON, nullable=True)
    accessibility = Column(JSON, nullable=True)
    images = Column(JSON, nullable=True)
    overall_score = Column(Integer, nullable=True)
    recommendations = Column(JSON, nullable=True)
    error_message = Column(String, nullable=True)
    category_errors = Column(JSON, nullable=True)  # category -> failure message

    tags = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    processing_started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    processing_time_ms = Column(Integer, nullable=True)

    # Relationships
    owner = relationship("User", back_populates="audit_jobs")
