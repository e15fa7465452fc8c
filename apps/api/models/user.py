"""User model."""

from sqlalchemy import Column, String, DateTime, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class User(Base):
    """Requester identity plus the usage counters read by the quota gate."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    plan_tier = Column(String, nullable=False, default="free")  # free, basic, premium, enterprise
    audits_this_month = Column(Integer, nullable=False, default=0)
    usage_period = Column(String, nullable=True)  # YYYY-MM of audits_this_month
    total_audits = Column(Integer, nullable=False, default=0)
    last_audit_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    audit_jobs = relationship("AuditJob", back_populates="owner", cascade="all, delete-orphan")
