# job_store.py
"""
Analysis job status, keyed by job id.

Lifecycle: created when a file is submitted, written when the analysis
webhook (or the synchronous blueprint path) reports back, read by polling,
and evicted once older than the configured TTL.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker

from pricing_engine import Geometry
from storage import AnalysisJob, as_utc

logger = logging.getLogger(__name__)

IN_PROGRESS = "in-progress"
COMPLETE = "complete"
FAILED = "failed"


def _status_payload(status: str, analysis_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {"status": status, "analysisData": analysis_data}


class JobStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(self, file_name: Optional[str] = None, job_id: Optional[str] = None) -> str:
        job_id = job_id or str(uuid.uuid4())
        db = self._session_factory()
        try:
            db.add(AnalysisJob(job_id=job_id, status=IN_PROGRESS, file_name=file_name))
            db.commit()
        finally:
            db.close()
        return job_id

    def _write(self, job_id: str, status: str, geometry: Optional[Geometry]) -> None:
        db = self._session_factory()
        try:
            job = db.get(AnalysisJob, job_id)
            if not job:
                # Webhooks can report on jobs this process never saw submitted.
                job = AnalysisJob(job_id=job_id)
                db.add(job)

            job.status = status
            job.analysis_data = geometry.to_dict() if geometry is not None else None
            db.commit()
        finally:
            db.close()

    def complete(self, job_id: str, geometry: Geometry) -> None:
        if geometry is None:
            raise ValueError("completed job requires geometry")
        self._write(job_id, COMPLETE, geometry)
        logger.info("job %s complete", job_id)

    def fail(self, job_id: str) -> None:
        self._write(job_id, FAILED, None)
        logger.warning("job %s failed", job_id)

    def get(self, job_id: str) -> Dict[str, Any]:
        """Status for polling. Unknown ids read as still in progress."""
        db = self._session_factory()
        try:
            job = db.get(AnalysisJob, job_id)
            if not job:
                return _status_payload(IN_PROGRESS, None)
            return _status_payload(job.status, job.analysis_data)
        finally:
            db.close()

    def geometry(self, job_id: str) -> Optional[Geometry]:
        payload = self.get(job_id)
        if payload["status"] != COMPLETE or not payload["analysisData"]:
            return None
        return Geometry.from_dict(payload["analysisData"])

    def purge_expired(self, ttl_seconds: float, now: Optional[datetime] = None) -> int:
        # Rows are written in UTC; SQLite stores them without an offset, so the
        # cutoff must be UTC too for the comparison to line up.
        now = as_utc(now or datetime.now(timezone.utc)).astimezone(timezone.utc)
        cutoff = now - timedelta(seconds=ttl_seconds)

        db = self._session_factory()
        try:
            removed = (
                db.query(AnalysisJob)
                .filter(AnalysisJob.created_at < cutoff)
                .delete(synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()

        if removed:
            logger.info("evicted %d expired analysis jobs", removed)
        return removed
