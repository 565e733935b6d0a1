"""Tests for domain models and request validation."""
from datetime import date, datetime, timezone

import pytest

from search_service.domain.models import Backend, ResultSet, SearchFilter, SearchHit, SortMode
from search_service.exceptions import ValidationError
from search_service.validation import (
    build_filter,
    clamp_page_size,
    normalize_prefix,
    parse_backend,
    parse_tags,
    utcnow,
)

from conftest import make_post


class TestSearchFilter:
    def test_page_size_clamped_to_ceiling(self):
        search_filter = SearchFilter(requester_id=1, page_size=500)
        assert search_filter.page_size == 100

    def test_page_below_one_rejected(self):
        with pytest.raises(ValidationError):
            SearchFilter(requester_id=1, page=0)

    def test_page_size_below_one_rejected(self):
        with pytest.raises(ValidationError):
            SearchFilter(requester_id=1, page_size=0)

    def test_blank_query_is_absent(self):
        assert SearchFilter(requester_id=1, query_text="   ").query_text is None
        assert SearchFilter(requester_id=1, query_text="  go  ").query_text == "go"

    def test_tags_normalized(self):
        search_filter = SearchFilter(requester_id=1, tags=frozenset({" design ", "", "ux"}))
        assert search_filter.tags == frozenset({"design", "ux"})

    def test_offset(self):
        assert SearchFilter(requester_id=1, page=3, page_size=20).offset == 40

    def test_backend_other(self):
        assert Backend.RELATIONAL.other is Backend.INDEX
        assert Backend.INDEX.other is Backend.RELATIONAL


class TestResultSet:
    def test_serialization_drops_cached_flag(self):
        hit = SearchHit(post=make_post(1, 2, "Title", "Body", ["a", "b"], 3), relevance_score=1.5,
                        highlights={"title": ["<mark>Title</mark>"]})
        result = ResultSet(
            posts=(hit,),
            total_matches=1,
            page=1,
            page_size=20,
            total_pages=1,
            has_more=False,
            search_latency_ms=3.2,
            backend=Backend.INDEX,
            max_score=1.5,
            cached=True,
        )
        data = result.to_dict()
        assert "cached" not in data
        assert data["posts"][0]["post"]["tags"] == ["a", "b"]

        restored = ResultSet.from_dict(data)
        assert restored.cached is False
        assert restored.posts == result.posts
        assert restored.backend is Backend.INDEX


class TestBuildFilter:
    def test_requester_required(self):
        with pytest.raises(ValidationError):
            build_filter(requester_id=None)
        with pytest.raises(ValidationError):
            build_filter(requester_id=0)

    def test_defaults(self):
        search_filter = build_filter(requester_id=1)
        assert search_filter.page == 1
        assert search_filter.page_size == 20
        assert search_filter.sort_mode is SortMode.RELEVANCE
        assert search_filter.backend is Backend.RELATIONAL

    def test_large_page_size_clamped(self):
        assert build_filter(requester_id=1, page_size=500).page_size == 100

    def test_invalid_sort_rejected(self):
        with pytest.raises(ValidationError, match="sort_by"):
            build_filter(requester_id=1, sort_by="random")

    def test_enum_strings_case_insensitive(self):
        search_filter = build_filter(requester_id=1, sort_by="DATE", backend="Index")
        assert search_filter.sort_mode is SortMode.DATE
        assert search_filter.backend is Backend.INDEX

    def test_date_only_upper_bound_covers_day(self):
        search_filter = build_filter(requester_id=1, date_from="2024-01-02", date_to="2024-01-05")
        assert search_filter.date_from == datetime(2024, 1, 2, 0, 0)
        assert search_filter.date_to.date() == date(2024, 1, 5)
        assert search_filter.date_to.hour == 23

    def test_aware_datetime_normalized_to_utc(self):
        search_filter = build_filter(requester_id=1, date_from="2024-01-02T09:00:00+09:00")
        assert search_filter.date_from == datetime(2024, 1, 2, 0, 0)

    def test_zulu_suffix(self):
        search_filter = build_filter(requester_id=1, date_to="2024-01-02T10:30:00Z")
        assert search_filter.date_to == datetime(2024, 1, 2, 10, 30)

    def test_reversed_range_rejected(self):
        with pytest.raises(ValidationError):
            build_filter(requester_id=1, date_from="2024-02-01", date_to="2024-01-01")

    def test_malformed_date_rejected(self):
        with pytest.raises(ValidationError, match="date_from"):
            build_filter(requester_id=1, date_from="yesterday")

    def test_friend_id_must_be_positive(self):
        with pytest.raises(ValidationError):
            build_filter(requester_id=1, friend_id=-3)


class TestHelpers:
    def test_clamp_page_size(self):
        assert clamp_page_size(None) == 20
        assert clamp_page_size(50) == 50
        assert clamp_page_size(1000) == 100
        with pytest.raises(ValidationError):
            clamp_page_size(0)

    def test_normalize_prefix(self):
        assert normalize_prefix("t") is None
        assert normalize_prefix(" t ") is None
        assert normalize_prefix(None) is None
        assert normalize_prefix(" ty ") == "ty"

    def test_parse_tags(self):
        assert parse_tags("design, ux,,") == ["design", "ux"]
        assert parse_tags(None) == []

    def test_parse_backend(self):
        assert parse_backend(None) is Backend.RELATIONAL
        assert parse_backend("index") is Backend.INDEX
        with pytest.raises(ValidationError):
            parse_backend("solr")

    def test_utcnow_is_naive_utc(self):
        now = utcnow()
        aware = datetime.now(timezone.utc).replace(tzinfo=None)
        assert now.tzinfo is None
        assert abs((aware - now).total_seconds()) < 5
