"""
Work Log Model - Online/offline shifts
"""
from sqlalchemy import Column, Integer, DateTime, ForeignKey

from app.db.database import Base


class WorkLog(Base):
    """One online session of a worker. check_out is NULL while the shift is open."""

    __tablename__ = "work_logs"

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("delivery_workers.id"), nullable=False, index=True)

    check_in = Column(DateTime, nullable=False, index=True)
    check_out = Column(DateTime, nullable=True)
    total_minutes = Column(Integer, nullable=True)
