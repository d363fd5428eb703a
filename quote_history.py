# quote_history.py
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import sessionmaker

from pricing_engine import CostBreakdown, Geometry, ProcessParameters
from storage import QuoteRecord, as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SavedQuote:
    id: str
    file_name: str
    file_extension: Optional[str]
    created_at: datetime
    geometry: Geometry
    parameters: ProcessParameters
    breakdown: CostBreakdown
    material_name: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "file_extension": self.file_extension,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "geometry": self.geometry.to_dict(),
            "parameters": self.parameters.to_dict(),
            "breakdown": self.breakdown.to_dict(),
            "material_name": self.material_name,
        }


Listener = Callable[[List[SavedQuote]], None]


def _from_record(r: QuoteRecord) -> SavedQuote:
    return SavedQuote(
        id=r.id,
        file_name=r.file_name,
        file_extension=r.file_extension,
        created_at=as_utc(r.created_at),
        geometry=Geometry.from_dict(r.geometry),
        parameters=ProcessParameters.from_dict(r.parameters),
        breakdown=CostBreakdown.from_dict(r.breakdown),
        material_name=r.material_name,
    )


class QuoteHistoryStore:
    """
    Saved quotes, newest first.

    Listeners registered with subscribe() get the full ordered list right
    away and again after every save or delete, until they unsubscribe or the
    store is closed.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._listeners: Dict[int, Listener] = {}
        self._next_listener_id = 0

    # ----------------------------
    # Records
    # ----------------------------
    def save(
        self,
        file_name: str,
        file_extension: Optional[str],
        geometry: Geometry,
        parameters: ProcessParameters,
        breakdown: Optional[CostBreakdown],
        material_name: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> SavedQuote:
        if breakdown is None or not file_name:
            raise ValueError("Cannot save: analysis or file name missing.")

        db = self._session_factory()
        try:
            seq = (db.query(func.max(QuoteRecord.seq)).scalar() or 0) + 1
            r = QuoteRecord(
                id=str(uuid.uuid4()),
                created_at=created_at or datetime.now(timezone.utc),
                seq=seq,
                file_name=file_name,
                file_extension=file_extension,
                material_name=material_name or parameters.material_id,
                geometry=geometry.to_dict(),
                parameters=parameters.to_dict(),
                breakdown=breakdown.to_dict(),
            )
            db.add(r)
            db.commit()
            saved = _from_record(r)
        finally:
            db.close()

        logger.info("saved quote %s for %s", saved.id, file_name)
        self._notify()
        return saved

    def list(self, limit: Optional[int] = None) -> List[SavedQuote]:
        db = self._session_factory()
        try:
            q = db.query(QuoteRecord).order_by(QuoteRecord.created_at.desc(), QuoteRecord.seq.desc())
            if limit:
                q = q.limit(limit)
            return [_from_record(r) for r in q.all()]
        finally:
            db.close()

    def get(self, quote_id: str) -> Optional[SavedQuote]:
        db = self._session_factory()
        try:
            r = db.get(QuoteRecord, quote_id)
            return _from_record(r) if r else None
        finally:
            db.close()

    def delete(self, quote_id: str) -> bool:
        db = self._session_factory()
        try:
            r = db.get(QuoteRecord, quote_id)
            if not r:
                return False
            db.delete(r)
            db.commit()
        finally:
            db.close()

        logger.info("deleted quote %s", quote_id)
        self._notify()
        return True

    # ----------------------------
    # Listeners
    # ----------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns the function that removes it."""
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._listeners[listener_id] = listener

        listener(self.list())

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    def listener_count(self) -> int:
        return len(self._listeners)

    def close(self) -> None:
        self._listeners.clear()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.list()
        for listener in list(self._listeners.values()):
            listener(snapshot)
