# analysis.py
"""
CAD analysis blueprint.

The real geometry extraction (Autodesk Forge: authenticate, upload to OSS,
start a derivative job, read volume / wall thickness / bounding box) is not
wired up. Until it is, the functions here hand back fixed geometry so the rest
of the quoting flow can be exercised end to end.
"""
import logging
import os
import uuid
from concurrent.futures import Executor, Future
from typing import Any, Callable, Dict, Optional

from pricing_engine import Dimensions, Geometry

logger = logging.getLogger(__name__)

# ----------------------------
# Config
# ----------------------------
FORGE_CLIENT_ID = os.environ.get("FORGE_CLIENT_ID", "")
FORGE_CLIENT_SECRET = os.environ.get("FORGE_CLIENT_SECRET", "")

MAX_UPLOAD_BYTES = 100 * 1024 * 1024  # 100MB

SUPPORTED_EXTENSIONS = ("stl", "step", "stp", "iges", "igs", "sldprt", "ipt")

# Returned when Forge credentials are not configured.
UNCONFIGURED_GEOMETRY = Geometry(
    volume=175.0,
    dimensions=Dimensions(length=60, width=50, height=60),
    wall_thickness=2.0,
    surface_area=200.0,
    accuracy="high",
)

# Placeholder for the real Forge result.
BLUEPRINT_GEOMETRY = Geometry(
    volume=187.35,
    dimensions=Dimensions(length=65, width=42, height=75),
    wall_thickness=1.8,
    surface_area=210.5,
    accuracy="high",
)

# What the host substitutes when the analysis call itself fails.
FALLBACK_GEOMETRY = Geometry(
    volume=175.0,
    dimensions=Dimensions(length=60, width=50, height=60),
    wall_thickness=2.0,
    surface_area=200.0,
    accuracy="mocked",
)


class AnalysisError(Exception):
    """Upload rejected or analysis could not run."""


class UploadTooLarge(AnalysisError):
    pass


def file_extension(file_name: str) -> str:
    return file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""


def validate_upload(file_name: Optional[str], content: bytes) -> str:
    """Return the lower-cased extension, or raise AnalysisError."""
    if not file_name:
        raise AnalysisError("No CAD file uploaded in the request body.")

    ext = file_extension(file_name)
    if ext not in SUPPORTED_EXTENSIONS:
        raise AnalysisError(f"unsupported CAD format: .{ext}" if ext else "CAD file has no extension")

    if not content:
        raise AnalysisError("uploaded CAD file is empty")

    if len(content) > MAX_UPLOAD_BYTES:
        raise UploadTooLarge(f"CAD file exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit")

    return ext


def run_cad_analysis(
    file_name: str,
    content: bytes,
    *,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
) -> Geometry:
    validate_upload(file_name, content)

    client_id = FORGE_CLIENT_ID if client_id is None else client_id
    client_secret = FORGE_CLIENT_SECRET if client_secret is None else client_secret

    if not client_id or not client_secret:
        logger.warning("Forge credentials missing; returning mock geometry for %s", file_name)
        return UNCONFIGURED_GEOMETRY

    # TODO: replace with the Forge OSS upload + Model Derivative job once the
    # service account is provisioned.
    logger.info("analyzed %s (%d bytes)", file_name, len(content))
    return BLUEPRINT_GEOMETRY


class LatestUpload:
    """
    Tracks which upload is current. Analyses run in the background and may
    finish out of order; a result that lands after its file was replaced
    (or a saved quote was loaded) is dropped instead of overwriting the
    newer one.
    """

    def __init__(self) -> None:
        self.token: Optional[str] = None
        self.file_name: Optional[str] = None
        self._pending: Dict[str, Future] = {}

    def begin(self, file_name: str) -> str:
        self.token = uuid.uuid4().hex
        self.file_name = file_name
        return self.token

    def is_current(self, token: str) -> bool:
        return token is not None and token == self.token

    def submit(self, executor: Executor, file_name: str, fn: Callable[..., Geometry], *args: Any) -> str:
        token = self.begin(file_name)
        self._pending[token] = executor.submit(fn, *args)
        return token

    def analyzing(self) -> bool:
        """True while the current upload's analysis has not come back."""
        return self.token in self._pending

    def collect(self) -> Optional[Geometry]:
        """
        Harvest finished analyses. Returns the current upload's geometry once
        it has landed, None otherwise. If the current analysis failed, its
        exception is raised here; failures of superseded uploads are dropped
        with their results.
        """
        for token, future in list(self._pending.items()):
            if not future.done():
                continue
            del self._pending[token]
            if not self.is_current(token):
                logger.info("discarding stale analysis result for superseded upload")
                continue
            return future.result()
        return None
