"""Tests for the filter engine and its visible-set views."""

import pytest

from conftest import entry
from lazylog.errors import InvalidPatternError
from lazylog.filter import FilterEngine, Pattern, VisibleSet, looks_like_regex
from lazylog.interpreters import PlainInterpreter
from lazylog.store import BoundedLogStore


def make_engine(capacity=100, level=0, case_sensitive=False):
    store = BoundedLogStore(capacity)
    return store, FilterEngine(store, PlainInterpreter(), level, case_sensitive)


def push(store, engine, *texts, **kw):
    for t in texts:
        seq = store.push(entry(t, **kw))
        engine.on_new_entry(store.get(seq))
    engine.prune()


def visible_contents(store, engine):
    return [store.get(s).content for s in engine.visible]


def test_literal_filter_keeps_arrival_order():
    store, eng = make_engine()
    push(store, eng, 'ERR1', 'ok', 'ERR2')
    eng.set_pattern('ERR')
    assert visible_contents(store, eng) == ['ERR1', 'ERR2']


def test_new_arrivals_are_filtered_incrementally():
    store, eng = make_engine()
    eng.set_pattern('ERR')
    push(store, eng, 'ERR1', 'ok', 'ERR2')
    assert visible_contents(store, eng) == ['ERR1', 'ERR2']


def test_no_filter_shows_whole_store():
    store, eng = make_engine(capacity=3)
    push(store, eng, 'a', 'b', 'c', 'd')
    assert not eng.active
    assert list(eng.visible) == [1, 2, 3]
    assert visible_contents(store, eng) == ['b', 'c', 'd']


def test_incremental_matches_full_recompute_under_eviction():
    store, eng = make_engine(capacity=5)
    eng.set_pattern('err')
    for i in range(40):
        text = f'ERR-{i}' if i % 3 == 0 else f'ok-{i}'
        push(store, eng, text)
        expected = [e.seq for e in store if 'err' in e.content.lower()]
        assert list(eng.visible) == expected
    incremental = list(eng.visible)
    eng.recompute_all()
    assert list(eng.visible) == incremental


def test_narrowing_pattern_matches_full_recompute():
    store, eng = make_engine()
    push(store, eng, 'error one', 'errand', 'terror', 'ok', 'ERROR two')
    eng.set_pattern('err')
    eng.set_pattern('erro')
    narrowed = list(eng.visible)
    eng.recompute_all()
    assert narrowed == list(eng.visible)
    assert visible_contents(store, eng) == ['error one', 'terror', 'ERROR two']


def test_widening_pattern_recomputes():
    store, eng = make_engine()
    push(store, eng, 'error', 'warn')
    eng.set_pattern('error')
    eng.set_pattern('r')
    assert visible_contents(store, eng) == ['error', 'warn']


def test_invalid_regex_keeps_previous_filter():
    store, eng = make_engine()
    push(store, eng, 'ERR1', 'ok', 'ERR2')
    eng.set_pattern('ERR')
    before = list(eng.visible)
    with pytest.raises(InvalidPatternError) as info:
        eng.set_pattern('ERR(')
    assert info.value.pattern == 'ERR('
    assert eng.pattern.text == 'ERR'
    assert list(eng.visible) == before


def test_empty_pattern_clears():
    store, eng = make_engine()
    push(store, eng, 'a', 'b')
    eng.set_pattern('a')
    eng.set_pattern('')
    assert not eng.active
    assert len(eng.visible) == 2


def test_regex_detection():
    assert looks_like_regex('ERR[0-9]')
    assert looks_like_regex('a|b')
    assert not looks_like_regex('connection refused')
    assert not looks_like_regex('12:34')


def test_regex_pattern():
    store, eng = make_engine()
    push(store, eng, 'ERR1', 'ERRx', 'err2')
    eng.set_pattern('ERR[0-9]')
    assert visible_contents(store, eng) == ['ERR1', 'err2']


def test_case_sensitive_engine():
    store, eng = make_engine(case_sensitive=True)
    push(store, eng, 'ERR1', 'err2')
    eng.set_pattern('ERR')
    assert visible_contents(store, eng) == ['ERR1']


def test_detail_level_change_reevaluates():
    store, eng = make_engine(level=0)
    push(store, eng, 'hello', 'world', time='12:34:56.000')
    eng.set_pattern('12:34')
    assert len(eng.visible) == 0
    eng.set_detail_level(1)
    assert visible_contents(store, eng) == ['hello', 'world']
    eng.set_detail_level(0)
    assert len(eng.visible) == 0


def test_prune_after_clear():
    store, eng = make_engine()
    eng.set_pattern('a')
    push(store, eng, 'a1', 'a2')
    store.clear()
    eng.recompute_all()
    eng.prune()
    assert len(eng.visible) == 0
    push(store, eng, 'a3')
    assert visible_contents(store, eng) == ['a3']


def test_pattern_spans():
    assert Pattern('err').spans('ERR and err') == [(0, 3), (8, 11)]
    assert Pattern('e.r').spans('xeXr') == [(1, 4)]
    assert Pattern('x*').spans('abc') == []


def test_visible_set_lookup():
    vs = VisibleSet([2, 5, 9])
    assert vs.index_of(5) == 1
    assert vs.index_of(6) is None
    assert vs.nearest(5) == 5
    assert vs.nearest(6) == 5
    assert vs.nearest(1) == 2
    assert vs.nearest(100) == 9
    assert vs.newest == 9 and vs.oldest == 2
    assert VisibleSet().nearest(3) is None


def test_visible_set_drop_below():
    vs = VisibleSet([2, 5, 9])
    assert vs.drop_below(6) == 2
    assert list(vs) == [9]
    assert vs[0] == 9
    assert len(vs) == 1
