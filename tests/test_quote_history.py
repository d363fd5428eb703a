"""
Quote history — snapshots, ordering, delete, listener lifecycle.
"""

from datetime import datetime, timedelta, timezone

import pytest

from pricing_engine import calculate_quote


def _save(history, geometry, params, name="bracket.stl", **kw):
    return history.save(
        file_name=name,
        file_extension=name.rsplit(".", 1)[-1],
        geometry=geometry,
        parameters=params,
        breakdown=calculate_quote(geometry, params),
        **kw,
    )


def test_save_snapshots_inputs_and_breakdown(history, sample_geometry, abs_params):
    saved = _save(history, sample_geometry, abs_params)

    fetched = history.get(saved.id)
    assert fetched == saved
    assert fetched.geometry == sample_geometry
    assert fetched.parameters == abs_params
    assert fetched.breakdown == calculate_quote(sample_geometry, abs_params)
    assert fetched.material_name == abs_params.material_id
    assert fetched.file_extension == "stl"


def test_save_requires_breakdown_and_file_name(history, sample_geometry, abs_params):
    with pytest.raises(ValueError):
        history.save("part.stl", "stl", sample_geometry, abs_params, breakdown=None)

    with pytest.raises(ValueError):
        history.save("", "stl", sample_geometry, abs_params, calculate_quote(sample_geometry, abs_params))


def test_list_is_newest_first(history, sample_geometry, abs_params):
    t0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
    a = _save(history, sample_geometry, abs_params, name="a.stl", created_at=t0)
    c = _save(history, sample_geometry, abs_params, name="c.stl", created_at=t0 + timedelta(days=2))
    b = _save(history, sample_geometry, abs_params, name="b.stl", created_at=t0 + timedelta(days=1))

    assert [q.id for q in history.list()] == [c.id, b.id, a.id]
    assert [q.id for q in history.list(limit=2)] == [c.id, b.id]


def test_same_timestamp_keeps_save_order(history, sample_geometry, abs_params):
    t0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
    first = _save(history, sample_geometry, abs_params, name="first.stl", created_at=t0)
    second = _save(history, sample_geometry, abs_params, name="second.stl", created_at=t0)

    assert [q.id for q in history.list()] == [second.id, first.id]


def test_created_at_comes_back_timezone_aware(history, sample_geometry, abs_params):
    saved = _save(history, sample_geometry, abs_params)

    assert history.get(saved.id).created_at.tzinfo is not None


def test_delete(history, sample_geometry, abs_params):
    saved = _save(history, sample_geometry, abs_params)

    assert history.delete(saved.id) is True
    assert history.get(saved.id) is None
    assert history.delete(saved.id) is False


def test_subscriber_gets_snapshot_then_updates(history, sample_geometry, abs_params):
    seen = []
    unsubscribe = history.subscribe(lambda quotes: seen.append([q.file_name for q in quotes]))

    first = _save(history, sample_geometry, abs_params, name="one.stl")
    _save(history, sample_geometry, abs_params, name="two.stl")
    history.delete(first.id)

    assert seen == [[], ["one.stl"], ["two.stl", "one.stl"], ["two.stl"]]
    unsubscribe()


def test_unsubscribe_stops_updates(history, sample_geometry, abs_params):
    seen = []
    unsubscribe = history.subscribe(seen.append)
    unsubscribe()
    unsubscribe()  # second call is a no-op

    _save(history, sample_geometry, abs_params)

    assert len(seen) == 1
    assert history.listener_count() == 0


def test_close_tears_down_all_listeners(history, sample_geometry, abs_params):
    a, b = [], []
    history.subscribe(a.append)
    history.subscribe(b.append)
    assert history.listener_count() == 2

    history.close()
    _save(history, sample_geometry, abs_params)

    assert history.listener_count() == 0
    assert len(a) == 1 and len(b) == 1
