"""Models package."""

from .user import User
from .audit_job import AuditJob
