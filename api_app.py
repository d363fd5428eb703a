import hashlib
import hmac
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, File, Header, HTTPException, Query, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

import pricing_config as cfg
from analysis import (
    BLUEPRINT_GEOMETRY,
    AnalysisError,
    UploadTooLarge,
    file_extension,
    run_cad_analysis,
    validate_upload,
)
from job_store import JobStore
from pricing_engine import Dimensions, Geometry, ProcessParameters, calculate_quote
from quote_history import QuoteHistoryStore
from storage import init_db, make_engine, make_session_factory


# ----------------------------
# App + config
# ----------------------------
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
logger = logging.getLogger("molding_quote.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Listeners live for the life of the process; shutdown tears them down.
    history.subscribe(_log_history)
    yield
    history.close()


app = FastAPI(title="Injection Molding Quote API", version="1.0.0", lifespan=lifespan)

ALLOWED_ORIGINS = [
    o.strip()
    for o in os.environ.get("ALLOWED_ORIGINS", "http://localhost:8501").split(",")
    if o.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Optional API key protection (not on the analysis webhook)
API_KEY = os.environ.get("API_KEY", "")

# Shared secret Forge signs webhook bodies with
FORGE_WEBHOOK_SECRET = os.environ.get("FORGE_WEBHOOK_SECRET", "")

JOB_TTL_SECONDS = float(os.environ.get("JOB_TTL_SECONDS", "3600"))

# DB config
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./quotes.db")
engine = make_engine(DATABASE_URL)
SessionLocal = make_session_factory(engine)
init_db(engine)

jobs = JobStore(SessionLocal)
history = QuoteHistoryStore(SessionLocal)


def _log_history(quotes) -> None:
    logger.debug("quote history now holds %d quotes", len(quotes))


# ----------------------------
# Helpers
# ----------------------------
def _require_api_key(x_api_key: Optional[str]) -> None:
    if API_KEY:
        if not x_api_key or x_api_key != API_KEY:
            raise HTTPException(status_code=401, detail="Unauthorized")


def _verify_webhook_signature(payload: bytes, signature: Optional[str]) -> None:
    if not FORGE_WEBHOOK_SECRET:
        return
    if not signature:
        raise HTTPException(status_code=400, detail="Missing webhook signature")

    expected = hmac.new(FORGE_WEBHOOK_SECRET.encode("utf-8"), payload, hashlib.sha1).hexdigest()
    received = signature.split("=", 1)[-1]
    if not hmac.compare_digest(expected, received):
        logger.warning("rejected analysis webhook with bad signature")
        raise HTTPException(status_code=400, detail="Invalid webhook signature")


# ----------------------------
# Request models
# ----------------------------
class DimensionsModel(BaseModel):
    length: float
    width: float
    height: float


class GeometryModel(BaseModel):
    volume: float
    dimensions: DimensionsModel
    wall_thickness: float
    surface_area: Optional[float] = None
    accuracy: str = "none"

    def to_geometry(self) -> Geometry:
        return Geometry(
            volume=self.volume,
            dimensions=Dimensions(**self.dimensions.model_dump()),
            wall_thickness=self.wall_thickness,
            surface_area=self.surface_area,
            accuracy=self.accuracy,
        )


class ParametersModel(BaseModel):
    material_id: str
    quantity: int
    cavities: int
    color: str = "natural"


class QuoteRequest(BaseModel):
    geometry: GeometryModel
    parameters: ParametersModel


class SaveQuoteRequest(QuoteRequest):
    file_name: str
    file_extension: Optional[str] = None


# ----------------------------
# Routes
# ----------------------------
@app.get("/health")
def health():
    return {"ok": True}


@app.get("/catalog")
def catalog():
    return {
        "materials": cfg.MATERIALS,
        "machines": cfg.MACHINE_RATES,
        "colors": cfg.COLOR_OPTIONS,
        "cavities": cfg.CAVITY_OPTIONS,
        "quantity": {
            "min": cfg.MIN_QUANTITY,
            "step": cfg.QUANTITY_STEP,
            "default": cfg.DEFAULT_QUANTITY,
        },
    }


@app.post("/analyze")
async def analyze(cadFile: Optional[UploadFile] = File(default=None)):
    """
    Accepts a CAD upload and returns its geometry. The blueprint analysis
    finishes inline; the job record is still written so clients can poll it.
    """
    if cadFile is None:
        raise HTTPException(status_code=400, detail="No CAD file uploaded in the request body.")

    content = await cadFile.read()
    try:
        validate_upload(cadFile.filename, content)
    except AnalysisError as e:
        status = 413 if isinstance(e, UploadTooLarge) else 400
        raise HTTPException(status_code=status, detail=str(e))

    job_id = jobs.create(file_name=cadFile.filename)
    try:
        geometry = run_cad_analysis(cadFile.filename, content)
    except AnalysisError as e:
        logger.warning("CAD analysis failed for %s: %s", cadFile.filename, e)
        jobs.fail(job_id)
        raise HTTPException(status_code=502, detail=f"Internal error during analysis: {e}")

    jobs.complete(job_id, geometry)

    return {
        "message": "Analysis successful.",
        "jobId": job_id,
        "fileExtension": file_extension(cadFile.filename),
        "analysisData": geometry.to_dict(),
    }


@app.post("/analysis/webhook", status_code=204)
async def analysis_webhook(request: Request):
    """
    Called by the analysis service when a job finishes. Do NOT protect with API_KEY.
    """
    payload = await request.body()
    _verify_webhook_signature(payload, request.headers.get("x-adsk-signature"))

    try:
        event = json.loads(payload or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Webhook body is not JSON")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    event_payload = event.get("payload") or {}
    if not isinstance(event_payload, dict):
        raise HTTPException(status_code=400, detail="Webhook payload must be a JSON object")
    context = event_payload.get("context") or {}
    if not isinstance(context, dict):
        raise HTTPException(status_code=400, detail="Webhook payload.context must be a JSON object")
    job_id = context.get("jobId") or "unknown_job"
    if not isinstance(job_id, str):
        raise HTTPException(status_code=400, detail="Webhook jobId must be a string")

    if event.get("status") == "success":
        data = event.get("analysisData")
        if not data:
            geometry = BLUEPRINT_GEOMETRY
        else:
            try:
                geometry = Geometry.from_dict(data)
            except (AttributeError, OverflowError, TypeError, ValueError) as e:
                logger.warning("rejected analysis webhook for %s: bad analysisData (%s)", job_id, e)
                raise HTTPException(status_code=400, detail=f"Invalid analysisData: {e}")
        jobs.complete(job_id, geometry)
    else:
        jobs.fail(job_id)

    return Response(status_code=204)


@app.get("/analysis/status")
def analysis_status(jobId: Optional[str] = Query(default=None)):
    if not jobId:
        raise HTTPException(status_code=400, detail="Missing jobId query parameter.")

    jobs.purge_expired(JOB_TTL_SECONDS)
    return jobs.get(jobId)


@app.post("/quote")
def quote(req: QuoteRequest, x_api_key: Optional[str] = Header(default=None)):
    _require_api_key(x_api_key)
    result = calculate_quote(
        req.geometry.to_geometry(),
        ProcessParameters(**req.parameters.model_dump()),
    )
    return {
        "computable": result is not None,
        "breakdown": result.to_dict() if result else None,
    }


@app.post("/quotes", status_code=201)
def save_quote(req: SaveQuoteRequest, x_api_key: Optional[str] = Header(default=None)):
    """
    Server recomputes the breakdown (do not trust client numbers) and stores
    the snapshot.
    """
    _require_api_key(x_api_key)

    geometry = req.geometry.to_geometry()
    params = ProcessParameters(**req.parameters.model_dump())
    result = calculate_quote(geometry, params)
    if result is None:
        raise HTTPException(status_code=422, detail="Quote is not computable for these inputs.")

    try:
        saved = history.save(
            file_name=req.file_name,
            file_extension=req.file_extension or file_extension(req.file_name),
            geometry=geometry,
            parameters=params,
            breakdown=result,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return saved.to_dict()


@app.get("/quotes")
def list_quotes(
    limit: int = Query(default=50, ge=1, le=500),
    x_api_key: Optional[str] = Header(default=None),
):
    _require_api_key(x_api_key)
    return {"quotes": [q.to_dict() for q in history.list(limit=limit)]}


@app.get("/quotes/{quote_id}")
def get_quote(quote_id: str, x_api_key: Optional[str] = Header(default=None)):
    _require_api_key(x_api_key)
    saved = history.get(quote_id)
    if not saved:
        raise HTTPException(status_code=404, detail="Quote not found")
    return saved.to_dict()


@app.delete("/quotes/{quote_id}")
def delete_quote(quote_id: str, x_api_key: Optional[str] = Header(default=None)):
    _require_api_key(x_api_key)
    if not history.delete(quote_id):
        raise HTTPException(status_code=404, detail="Quote not found")
    return {"ok": True}
