"""
ErgoPulse SQL Metric Store
SQLAlchemy implementation of the engine's MetricStore collaborator, plus the
read-side queries used by the dashboard endpoints.

Writes raise on failure; the engine wraps every call from the frame path in
``fire_and_forget`` so errors are logged and dropped there.
"""

import json
import logging
import time
from collections import Counter
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session as SASession

from app.core.database import SessionLocal
from app.models.metrics import AppSetting, BreakRecordRow, RawMetric
from ergo_engine.breaks import BreakRecord, summarize_breaks
from ergo_engine.store import MetricStore
from ergo_engine.types import MetricType

logger = logging.getLogger("ergo.store")


class SqlMetricStore(MetricStore):
    def __init__(self, session_factory: Callable[[], SASession] = SessionLocal,
                 clock: Callable[[], float] = time.time):
        self.session_factory = session_factory
        self.clock = clock

    def _write(self, action: Callable[[SASession], None]) -> None:
        db = self.session_factory()
        try:
            action(db)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ── MetricStore ──────────────────────────────────────────

    def append(self, metric_type: str, value: float, metadata: Optional[Dict[str, Any]] = None) -> None:
        row = RawMetric(
            timestamp=self.clock(),
            metric_type=metric_type,
            value=float(value),
            metadata_json=metadata or {},
        )
        self._write(lambda db: db.add(row))

    def get_setting(self, key: str) -> Any:
        db = self.session_factory()
        try:
            row = db.get(AppSetting, key)
            return json.loads(row.value) if row else None
        finally:
            db.close()

    def set_setting(self, key: str, value: Any) -> None:
        def upsert(db: SASession) -> None:
            row = db.get(AppSetting, key)
            if row is None:
                db.add(AppSetting(key=key, value=json.dumps(value)))
            else:
                row.value = json.dumps(value)

        self._write(upsert)
        logger.debug(f"Setting saved: {key}")

    def append_break_record(self, record: Dict[str, Any]) -> None:
        row = BreakRecordRow(created_at=self.clock(), **record)
        self._write(lambda db: db.add(row))

    def get_break_history(self, days: int = 7) -> List[Dict[str, Any]]:
        since = self.clock() - days * 86400
        db = self.session_factory()
        try:
            rows = (
                db.query(BreakRecordRow)
                .filter(BreakRecordRow.created_at >= since)
                .order_by(BreakRecordRow.created_at.desc())
                .all()
            )
            return [r.to_dict() for r in rows]
        finally:
            db.close()

    # ── Read side ────────────────────────────────────────────

    def get_metrics(self, metric_type: Optional[str] = None, hours: float = 24) -> List[Dict[str, Any]]:
        since = self.clock() - hours * 3600
        db = self.session_factory()
        try:
            query = db.query(RawMetric).filter(RawMetric.timestamp >= since)
            if metric_type:
                query = query.filter(RawMetric.metric_type == metric_type)
            return [r.to_dict() for r in query.order_by(RawMetric.timestamp.asc()).all()]
        finally:
            db.close()

    def _sum_counts(self, metric_type: MetricType, hours: float):
        counts: Counter = Counter()
        switches = 0
        for row in self.get_metrics(metric_type.value, hours):
            meta = row["metadata"]
            counts.update({k: int(v) for k, v in (meta.get("counts") or {}).items()})
            switches += int(meta.get("switches", 0))
        return counts, switches

    @staticmethod
    def _distribution(counts: Counter) -> Dict[str, Any]:
        total = sum(counts.values())
        return {
            "total": total,
            "counts": dict(counts),
            "percentages": {
                k: round(v / total * 100, 1) for k, v in counts.items()
            } if total else {},
        }

    def get_zone_metrics(self, hours: float = 24) -> Dict[str, Any]:
        counts, _ = self._sum_counts(MetricType.ZONE, hours)
        return self._distribution(counts)

    def get_monitor_metrics(self, hours: float = 24) -> Dict[str, Any]:
        counts, switches = self._sum_counts(MetricType.MONITOR_GAZE, hours)
        result = self._distribution(counts)
        result["switches"] = switches
        return result

    def get_break_stats(self, days: int = 7) -> Dict[str, Any]:
        records = [BreakRecord.from_dict(r) for r in self.get_break_history(days)]
        return summarize_breaks(records)

    def prune_old_metrics(self, days: int) -> int:
        cutoff = self.clock() - days * 86400
        db = self.session_factory()
        try:
            deleted = db.query(RawMetric).filter(RawMetric.timestamp < cutoff).delete()
            db.commit()
            if deleted:
                logger.info(f"Pruned {deleted} metrics older than {days} days")
            return deleted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
