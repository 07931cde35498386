"""
Tests for the shared filter and pagination pipeline.
"""

from datetime import datetime, timedelta, timezone

import pytest

from smolbrain.errors import ValidationError
from smolbrain.filters import DEFAULT_LIMIT, Filters, Window, paginate
from smolbrain.types import (
    TIMESTAMP_FORMAT,
    normalize_tag,
    normalize_tags,
    parse_time_bound,
    validate_content,
)


@pytest.fixture
def clock(monkeypatch):
    """Control the creation timestamp of stored memories."""
    state = {"now": "2026-01-10T12:00:00Z"}
    monkeypatch.setattr("smolbrain.memory_store.utc_now", lambda: state["now"])
    return state


def _add_at(brain, clock, timestamp, content, tags=()):
    clock["now"] = timestamp
    return brain.add(content, tags)


class TestParseTimeBound:

    def test_timestamp(self):
        assert parse_time_bound("2026-01-15T10:30:00Z") == "2026-01-15T10:30:00Z"

    def test_timestamp_without_zone_is_utc(self):
        assert parse_time_bound("2026-01-15T10:30") == "2026-01-15T10:30:00Z"

    def test_timestamp_with_offset_converted(self):
        assert parse_time_bound("2026-01-15T12:30:00+02:00") == "2026-01-15T10:30:00Z"

    def test_date_lower_bound(self):
        assert parse_time_bound("2026-01-15") == "2026-01-15T00:00:00Z"

    def test_date_upper_bound_covers_day(self):
        assert parse_time_bound("2026-01-15", upper=True) == "2026-01-15T23:59:59Z"

    def test_slash_date(self):
        assert parse_time_bound("2026/01/15") == "2026-01-15T00:00:00Z"

    def test_duration(self):
        result = datetime.strptime(parse_time_bound("P3D"), TIMESTAMP_FORMAT)
        expected = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=3)
        assert abs((result - expected).total_seconds()) < 5

    def test_duration_with_time(self):
        result = datetime.strptime(parse_time_bound("PT2H"), TIMESTAMP_FORMAT)
        expected = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=2)
        assert abs((result - expected).total_seconds()) < 5

    @pytest.mark.parametrize("value", ["yesterday", "P", "2026-13-45", "PT"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_time_bound(value)


class TestTags:

    def test_trim_keeps_case(self):
        assert normalize_tag("  Urgent ") == "Urgent"

    def test_inner_whitespace_kept(self):
        assert normalize_tag(" two words ") == "two words"

    @pytest.mark.parametrize("tag", ["", "   ", "\t\n", None])
    def test_invalid(self, tag):
        with pytest.raises(ValidationError):
            normalize_tag(tag)

    def test_long_label_kept(self):
        assert normalize_tag("x" * 200) == "x" * 200

    def test_dedup_exact_sorted(self):
        assert normalize_tags(["b", "A", "a", "b "]) == ["A", "a", "b"]

    def test_content_cannot_be_blank(self):
        with pytest.raises(ValidationError):
            validate_content("  \n ")


class TestWindow:

    def test_default_limit(self):
        w = Window()
        assert w.limit == DEFAULT_LIMIT
        assert not w.from_end

    def test_limit_and_tail_exclusive(self):
        with pytest.raises(ValidationError):
            Window(limit=5, tail=5)

    @pytest.mark.parametrize("kwargs", [{"limit": -1}, {"tail": -1}, {"offset": -2}])
    def test_negative_rejected(self, kwargs):
        with pytest.raises(ValidationError):
            Window(**kwargs)

    def test_paginate_head(self):
        page = paginate(list(range(10)), Window(limit=3, offset=2))
        assert page.items == [2, 3, 4]
        assert page.total == 10
        assert page.remaining == 5

    def test_paginate_tail(self):
        page = paginate(list(range(10)), Window(tail=3))
        assert page.items == [7, 8, 9]

    def test_paginate_tail_offset(self):
        page = paginate(list(range(10)), Window(tail=3, offset=2))
        assert page.items == [5, 6, 7]

    def test_paginate_past_end(self):
        page = paginate(list(range(3)), Window(limit=5, offset=10))
        assert page.items == []
        assert page.total == 3
        assert page.remaining == 0


class TestListing:

    def test_chronological_order(self, brain):
        ids = [brain.add(f"memory {i}").id for i in range(5)]
        page = brain.list_memories()
        assert [m.id for m in page] == ids
        assert page.total == 5

    def test_total_independent_of_window(self, brain):
        for i in range(30):
            brain.add(f"memory {i}")
        assert brain.list_memories(window=Window(limit=5)).total == 30
        assert brain.list_memories(window=Window(tail=5)).total == 30
        assert brain.list_memories(window=Window(limit=5, offset=28)).total == 30

    def test_default_limit_applied(self, brain):
        for i in range(25):
            brain.add(f"memory {i}")
        page = brain.list_memories()
        assert len(page) == DEFAULT_LIMIT
        assert page.remaining == 5

    def test_tail_returns_last_in_ascending_order(self, brain):
        ids = [brain.add(f"memory {i}").id for i in range(6)]
        page = brain.list_memories(window=Window(tail=3))
        assert [m.id for m in page] == ids[3:]

    def test_tail_with_offset(self, brain):
        ids = [brain.add(f"memory {i}").id for i in range(6)]
        page = brain.list_memories(window=Window(tail=2, offset=1))
        assert [m.id for m in page] == ids[3:5]

    def test_limit_zero(self, brain):
        brain.add("x")
        page = brain.list_memories(window=Window(limit=0))
        assert page.items == []
        assert page.total == 1

    def test_tags_any_of(self, brain):
        a = brain.add("a", ["red"])
        b = brain.add("b", ["blue"])
        brain.add("c", ["green"])
        page = brain.list_memories(Filters(tags=["red", "blue"]))
        assert [m.id for m in page] == [a.id, b.id]

    def test_tag_filter_is_exact(self, brain):
        a = brain.add("a", ["Blue"])
        brain.add("b", ["blue"])
        page = brain.list_memories(Filters(tags=["Blue"]))
        assert [m.id for m in page] == [a.id]

    def test_archived_excluded_by_default(self, brain):
        a = brain.add("a")
        b = brain.add("b")
        brain.remove(a.id)
        assert [m.id for m in brain.list_memories()] == [b.id]
        assert [m.id for m in brain.list_memories(Filters(include_archived=True))] == [a.id, b.id]

    def test_time_bounds_inclusive(self, brain, clock):
        _add_at(brain, clock, "2026-01-01T09:00:00Z", "first")
        mid = _add_at(brain, clock, "2026-01-02T09:00:00Z", "second")
        _add_at(brain, clock, "2026-01-03T09:00:00Z", "third")

        page = brain.list_memories(Filters(
            since="2026-01-02T09:00:00Z", until="2026-01-02T09:00:00Z",
        ))
        assert [m.id for m in page] == [mid.id]

    def test_date_upper_bound_includes_whole_day(self, brain, clock):
        _add_at(brain, clock, "2026-01-02T23:30:00Z", "late")
        _add_at(brain, clock, "2026-01-03T00:00:01Z", "next day")
        page = brain.list_memories(Filters(until="2026-01-02"))
        assert [m.content for m in page] == ["late"]

    def test_filters_combine(self, brain, clock):
        _add_at(brain, clock, "2026-01-01T00:00:00Z", "old red", ["red"])
        new_red = _add_at(brain, clock, "2026-01-05T00:00:00Z", "new red", ["red"])
        _add_at(brain, clock, "2026-01-05T00:00:00Z", "new blue", ["blue"])
        page = brain.list_memories(Filters(tags=["red"], since="2026-01-03"))
        assert [m.id for m in page] == [new_red.id]

    def test_same_timestamp_ordered_by_id(self, brain, clock):
        ids = [_add_at(brain, clock, "2026-01-01T00:00:00Z", f"m{i}").id for i in range(4)]
        assert [m.id for m in brain.list_memories()] == ids
        assert [m.id for m in brain.list_memories(window=Window(tail=2))] == ids[2:]

    def test_invalid_bound_rejected(self, brain):
        with pytest.raises(ValidationError):
            brain.list_memories(Filters(since="last tuesday"))

    def test_blank_filter_tag_rejected(self, brain):
        with pytest.raises(ValidationError):
            brain.list_memories(Filters(tags=["  "]))
