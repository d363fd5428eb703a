"""
CAD analysis blueprint — upload validation, mock results, stale upload handling.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace

import pytest

import analysis
from analysis import (
    BLUEPRINT_GEOMETRY,
    FALLBACK_GEOMETRY,
    UNCONFIGURED_GEOMETRY,
    AnalysisError,
    LatestUpload,
    UploadTooLarge,
    file_extension,
    run_cad_analysis,
    validate_upload,
)


@pytest.mark.parametrize(
    "name,ext",
    [("bracket.STEP", "step"), ("housing.v2.stl", "stl"), ("part.SLDPRT", "sldprt"), ("noext", "")],
)
def test_file_extension(name, ext):
    assert file_extension(name) == ext


def test_validate_upload_accepts_supported_formats():
    assert validate_upload("lid.igs", b"data") == "igs"


@pytest.mark.parametrize(
    "name,content",
    [(None, b"data"), ("", b"data"), ("drawing.pdf", b"data"), ("README", b"data"), ("part.stl", b"")],
)
def test_validate_upload_rejects(name, content):
    with pytest.raises(AnalysisError):
        validate_upload(name, content)


def test_validate_upload_rejects_oversize(monkeypatch):
    monkeypatch.setattr(analysis, "MAX_UPLOAD_BYTES", 8)

    with pytest.raises(UploadTooLarge):
        validate_upload("part.stl", b"123456789")


def test_missing_credentials_return_mock_geometry():
    g = run_cad_analysis("part.stl", b"solid", client_id="", client_secret="")

    assert g == UNCONFIGURED_GEOMETRY
    assert g.volume == 175.0
    assert g.accuracy == "high"


def test_configured_credentials_return_blueprint_geometry():
    g = run_cad_analysis("part.step", b"ISO-10303", client_id="id", client_secret="secret")

    assert g == BLUEPRINT_GEOMETRY
    assert g.volume == 187.35
    assert g.wall_thickness == 1.8


def test_run_cad_analysis_validates_first():
    with pytest.raises(AnalysisError):
        run_cad_analysis("part.docx", b"data", client_id="id", client_secret="secret")


def test_fallback_geometry_is_flagged_mocked():
    assert FALLBACK_GEOMETRY.accuracy == "mocked"
    assert FALLBACK_GEOMETRY.volume > 0


class HeldExecutor:
    """Runs submitted work only when the test says so, in any order."""

    def __init__(self):
        self.calls = []

    def submit(self, fn, *args):
        future = Future()
        self.calls.append((future, fn, args))
        return future

    def finish(self, index):
        future, fn, args = self.calls[index]
        try:
            future.set_result(fn(*args))
        except Exception as e:  # handed to the future, as a real executor does
            future.set_exception(e)


def _analyze_ok(name):
    return replace(BLUEPRINT_GEOMETRY, accuracy=name)


def _analyze_broken(name):
    raise RuntimeError(f"analysis of {name} failed")


def test_latest_upload_returns_current_result():
    executor = HeldExecutor()
    upload = LatestUpload()
    upload.submit(executor, "a.stl", _analyze_ok, "a")

    assert upload.analyzing()
    assert upload.collect() is None

    executor.finish(0)
    assert upload.collect().accuracy == "a"
    assert not upload.analyzing()
    assert upload.collect() is None


def test_latest_upload_drops_result_that_lands_after_replacement():
    executor = HeldExecutor()
    upload = LatestUpload()
    upload.submit(executor, "a.stl", _analyze_ok, "a")
    upload.submit(executor, "b.stl", _analyze_ok, "b")

    # a.stl lands after b.stl replaced it.
    executor.finish(0)
    assert upload.collect() is None
    assert upload.analyzing()

    executor.finish(1)
    assert upload.collect().accuracy == "b"
    assert upload.file_name == "b.stl"


def test_latest_upload_newer_result_wins_even_when_older_finishes_later():
    executor = HeldExecutor()
    upload = LatestUpload()
    upload.submit(executor, "a.stl", _analyze_ok, "a")
    upload.submit(executor, "b.stl", _analyze_ok, "b")

    executor.finish(1)
    assert upload.collect().accuracy == "b"

    executor.finish(0)
    assert upload.collect() is None


def test_loading_a_saved_quote_supersedes_in_flight_analysis():
    executor = HeldExecutor()
    upload = LatestUpload()
    upload.submit(executor, "a.stl", _analyze_ok, "a")
    upload.begin("saved.step")

    executor.finish(0)
    assert not upload.analyzing()
    assert upload.collect() is None


def test_latest_upload_raises_current_failure_and_drops_stale_one():
    executor = HeldExecutor()
    upload = LatestUpload()
    upload.submit(executor, "a.stl", _analyze_broken, "a")
    upload.submit(executor, "b.stl", _analyze_broken, "b")

    executor.finish(0)
    assert upload.collect() is None

    executor.finish(1)
    with pytest.raises(RuntimeError, match="b failed"):
        upload.collect()


def test_latest_upload_runs_on_a_real_executor():
    upload = LatestUpload()
    with ThreadPoolExecutor(max_workers=1) as executor:
        upload.submit(executor, "a.stl", _analyze_ok, "a")

    assert upload.collect().accuracy == "a"


def test_nothing_is_current_before_any_upload():
    upload = LatestUpload()

    assert not upload.is_current("anything")
    assert not upload.analyzing()
    assert upload.collect() is None
