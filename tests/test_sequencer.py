"""Tests for RequestSequencer."""

from maboroshi.lib.sequencer import RequestSequencer


def test_ids_increase():
    seq = RequestSequencer()
    ids = [seq.begin_request() for _ in range(5)]
    assert ids == sorted(ids)
    assert len(set(ids)) == 5


def test_only_latest_is_current():
    seq = RequestSequencer()
    first = seq.begin_request()
    assert seq.is_current(first)
    second = seq.begin_request()
    assert not seq.is_current(first)
    assert seq.is_current(second)
    assert seq.active == second


def test_nothing_current_before_first_request():
    seq = RequestSequencer()
    assert seq.active == 0
    assert not seq.is_current(1)
