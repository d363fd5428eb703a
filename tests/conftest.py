"""
Shared test fixtures — in-memory SQLite stores and the API test client.
"""

import os

import pytest
from fastapi.testclient import TestClient

# Configure before importing app modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FORGE_CLIENT_ID"] = ""
os.environ["FORGE_CLIENT_SECRET"] = ""
os.environ["FORGE_WEBHOOK_SECRET"] = ""
os.environ["API_KEY"] = ""

import api_app  # noqa: E402
from job_store import JobStore  # noqa: E402
from pricing_engine import Dimensions, Geometry, ProcessParameters  # noqa: E402
from quote_history import QuoteHistoryStore  # noqa: E402
from storage import Base, init_db, make_engine, make_session_factory  # noqa: E402

ABS = "ABS (Acrylonitrile Butadiene Styrene)"


@pytest.fixture(autouse=True)
def reset_api_database():
    """Fresh tables for the app's own database on every test."""
    Base.metadata.drop_all(bind=api_app.engine)
    Base.metadata.create_all(bind=api_app.engine)
    yield


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(api_app.app)


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def job_store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def history(session_factory):
    store = QuoteHistoryStore(session_factory)
    yield store
    store.close()


@pytest.fixture
def sample_geometry():
    """The blueprint part: 187.35 cm3, 65 x 42 x 75 mm, 1.8 mm walls."""
    return Geometry(
        volume=187.35,
        dimensions=Dimensions(length=65, width=42, height=75),
        wall_thickness=1.8,
        accuracy="high",
    )


@pytest.fixture
def abs_params():
    return ProcessParameters(material_id=ABS, quantity=1000, cavities=1, color="natural")


@pytest.fixture
def geometry_payload():
    return {
        "volume": 187.35,
        "dimensions": {"length": 65, "width": 42, "height": 75},
        "wall_thickness": 1.8,
        "accuracy": "high",
    }


@pytest.fixture
def parameters_payload():
    return {"material_id": ABS, "quantity": 1000, "cavities": 1, "color": "natural"}
