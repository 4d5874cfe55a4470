"""
Metric Storage Models
Raw flushed metrics, key/value app settings and break outcomes.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, JSON, Text
from datetime import datetime
from app.core.database import Base


class RawMetric(Base):
    """One flushed aggregate (POSTURE, EYE, BLINK, PRESENCE, ZONE, MONITOR_GAZE)"""
    __tablename__ = "raw_metrics"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(Float, nullable=False, index=True)  # epoch seconds
    metric_type = Column(String(30), nullable=False, index=True)
    value = Column(Float, nullable=False)
    metadata_json = Column("metadata", JSON, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "metric_type": self.metric_type,
            "value": self.value,
            "metadata": self.metadata_json or {},
        }


class AppSetting(Base):
    """JSON-encoded settings blob per key"""
    __tablename__ = "app_settings"

    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class BreakRecordRow(Base):
    """Outcome of one scheduled break (taken, snoozed or skipped)"""
    __tablename__ = "break_records"

    id = Column(Integer, primary_key=True, index=True)
    scheduled_time = Column(Float, nullable=False, index=True)
    actual_time = Column(Float, nullable=True)
    duration_min = Column(Float, default=0.0)
    was_taken = Column(Boolean, default=False)
    was_snoozed = Column(Boolean, default=False)
    effectiveness_score = Column(Float, default=0.0)
    pre_strain = Column(Float, default=0.0)
    post_strain = Column(Float, default=0.0)
    created_at = Column(Float, nullable=False, index=True)

    def to_dict(self):
        return {
            "scheduled_time": self.scheduled_time,
            "actual_time": self.actual_time,
            "duration_min": self.duration_min,
            "was_taken": bool(self.was_taken),
            "was_snoozed": bool(self.was_snoozed),
            "effectiveness_score": self.effectiveness_score,
            "pre_strain": self.pre_strain,
            "post_strain": self.post_strain,
        }
