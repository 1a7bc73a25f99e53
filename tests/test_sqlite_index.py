from datetime import datetime, timezone

import pytest

from catalog import FileInfo, Internal, Movie, SearchQuery, SortField, SortOrder
from sqlite_index import DB_FILENAME, SqliteCatalogIndex, build_search_sql, format_date, parse_date


def test_reopen_keeps_entries(tmp_path):
    idx = SqliteCatalogIndex.open(tmp_path / "root")
    id = idx.add_movie(Movie(title="Heat", tags=["Crime"]))
    idx.update_media_info(id, FileInfo(extension="mp4", mime_type="video/mp4"))
    created = idx.get_movie(id).created_at
    idx.close()

    assert (tmp_path / "root" / DB_FILENAME).is_file()
    idx = SqliteCatalogIndex.open(tmp_path / "root")
    try:
        entry = idx.get_movie(id)
        assert entry.movie.tags == ["crime"]
        assert entry.media_info.extension == "mp4"
        assert entry.created_at == created
    finally:
        idx.close()


def test_date_text_is_fixed_width_and_round_trips():
    early = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
    late = datetime(2024, 1, 1, 0, 0, 0, 500, tzinfo=timezone.utc)
    assert len(format_date(early)) == len(format_date(late))
    assert format_date(early) < format_date(late)
    assert parse_date(format_date(late)) == late


def test_parse_date_rejects_garbage():
    with pytest.raises(Internal):
        parse_date("yesterday")


def test_build_search_sql_unfiltered():
    sql, params = build_search_sql(SearchQuery())
    assert "WHERE" not in sql
    assert sql.endswith("ORDER BY m.date_added DESC, m.id DESC")
    assert params == []


def test_build_search_sql_filters_and_paging():
    q = SearchQuery(
        sort_field=SortField.TITLE,
        sort_order=SortOrder.ASCENDING,
        title_pattern="*Boot",
        tags=["War", "drama"],
        offset=2,
    )
    sql, params = build_search_sql(q)
    assert "title_match(?, m.title)" in sql
    assert "HAVING COUNT(DISTINCT tag) = ?" in sql
    assert "ORDER BY m.title ASC, m.id ASC" in sql
    assert params == ["*Boot", "drama", "war", 2, -1, 2]
