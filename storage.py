# storage.py
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ----------------------------
# DB Models
# ----------------------------
class AnalysisJob(Base):
    __tablename__ = "analysis_jobs"

    job_id = Column(String, primary_key=True)
    status = Column(String, nullable=False)  # in-progress / complete / failed
    file_name = Column(String, nullable=True)
    analysis_data = Column(JSON, nullable=True)  # geometry, analysis-service shape

    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class QuoteRecord(Base):
    __tablename__ = "saved_quotes"

    id = Column(String, primary_key=True)  # uuid4
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    # Tie-break for quotes saved within the same clock tick.
    seq = Column(Integer, nullable=False, default=0)

    file_name = Column(String, nullable=False)
    file_extension = Column(String, nullable=True)
    material_name = Column(String, nullable=True)

    geometry = Column(JSON, nullable=False)
    parameters = Column(JSON, nullable=False)
    breakdown = Column(JSON, nullable=False)


# ----------------------------
# Engine / sessions
# ----------------------------
def make_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory SQLite lives in a single connection.
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


def as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
