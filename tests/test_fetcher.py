"""fetcher モジュールのモックテスト."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from psycopg2.extras import NumericRange

from catalog.db import CancelToken
from catalog.errors import DecodeFailure, QueryFailure
from catalog.fetcher import (
    SOURCES,
    MichelinFetcher,
    TabelogFetcher,
    make_fetcher,
)
from catalog.models import MetaPage


def _tabelog_row(id_: int, **overrides) -> dict:
    row = {
        "id": id_,
        "name": f"店舗{id_}",
        "cuisine": "寿司、和食",
        "lat": 35.6895,
        "lng": 139.6917,
        "city_area": "新宿",
        "region": "Tokyo",
        "rank": 3.6,
        "price_range": NumericRange(Decimal("1000"), None, "[)"),
        "image": f"https://example.com/{id_}.jpg",
        "url": f"https://tabelog.com/tokyo/{id_}/",
    }
    row.update(overrides)
    return row


def _michelin_row(id_: int, **overrides) -> dict:
    row = {
        "id": id_,
        "name": f"Restaurant {id_}",
        "cuisine": "French",
        "lat": 35.0,
        "lng": 135.75,
        "area": "Kyoto",
        "region": "Kyoto",
        "rank": "1 Star",
        "price_category": "¥¥¥",
        "image": "img",
        "url": f"/restaurant/kyoto/r{id_}",
    }
    row.update(overrides)
    return row


def _meta_row(id_: int, url: str = "/r") -> dict:
    return {
        "id": id_, "name": f"n{id_}", "cuisine": "A、B",
        "lat": 35.1, "lng": 139.2, "image": "img", "url": url,
    }


class TestMakeFetcher:
    """make_fetcher のテスト."""

    def test_tabelog(self):
        assert isinstance(make_fetcher("tabelog"), TabelogFetcher)

    def test_michelin(self):
        assert isinstance(make_fetcher("michelin"), MichelinFetcher)

    def test_unknown(self):
        assert make_fetcher("gurunavi") is None

    def test_case_sensitive(self):
        assert make_fetcher("Tabelog") is None

    def test_sources(self):
        assert SOURCES == ("tabelog", "michelin")


class TestFetch:
    """Fetcher.fetch のテスト."""

    def test_page_window_sql(self):
        """page 3 は OFFSET 30 LIMIT 10, id 昇順."""
        executor = MagicMock()
        executor.query.return_value = []

        TabelogFetcher().fetch(executor, "Tokyo", 3)

        sql, params, cancel = executor.query.call_args.args
        assert "FROM tabelog" in sql
        assert "WHERE region = %s ORDER BY id OFFSET %s LIMIT %s" in sql
        assert params == ("Tokyo", 30, 10)
        assert cancel is None

    def test_cancel_token_passed_to_query(self):
        executor = MagicMock()
        executor.query.return_value = []
        token = CancelToken()

        MichelinFetcher().fetch(executor, "Kyoto", 1, token)

        assert executor.query.call_args.args[2] is token

    def test_michelin_table(self):
        executor = MagicMock()
        executor.query.return_value = []

        MichelinFetcher().fetch(executor, "Kyoto", 0)

        sql, params, _ = executor.query.call_args.args
        assert "FROM michelin" in sql
        assert "price_category" in sql
        assert params == ("Kyoto", 0, 10)

    def test_tabelog_items(self):
        executor = MagicMock()
        executor.query.return_value = [_tabelog_row(1), _tabelog_row(2)]

        items = TabelogFetcher().fetch(executor, "Tokyo", 0)

        assert [i.id for i in items] == [1, 2]
        assert items[0].cuisines == ("寿司", "和食")
        assert items[0].rank == "3.60"
        assert items[0].price_range == "¥1000 ~ "
        assert items[0].lat == "35.6895"

    def test_tabelog_null_and_empty_price(self):
        executor = MagicMock()
        executor.query.return_value = [
            _tabelog_row(1, price_range=None),
            _tabelog_row(2, price_range=NumericRange(empty=True)),
        ]

        items = TabelogFetcher().fetch(executor, "Tokyo", 0)

        assert [i.price_range for i in items] == ["No Price", "No Price"]

    def test_michelin_items(self):
        executor = MagicMock()
        executor.query.return_value = [_michelin_row(5)]

        items = MichelinFetcher().fetch(executor, "Kyoto", 0)

        assert items[0].url == "https://guide.michelin.com/restaurant/kyoto/r5"
        assert items[0].rank == "1 Star"
        assert items[0].price_range == "¥¥¥"
        assert items[0].lat == "35"

    def test_past_last_page(self):
        executor = MagicMock()
        executor.query.return_value = []

        assert TabelogFetcher().fetch(executor, "Tokyo", 999) == []

    def test_calls_are_isolated(self):
        """同じインスタンスでも呼び出しごとに結果が独立していること."""
        fetcher = TabelogFetcher()
        executor = MagicMock()
        executor.query.side_effect = [[_tabelog_row(1)], [_tabelog_row(2)]]

        first = fetcher.fetch(executor, "Tokyo", 0)
        second = fetcher.fetch(executor, "Tokyo", 1)

        assert [i.id for i in first] == [1]
        assert [i.id for i in second] == [2]

    def test_decode_failure_discards_page(self):
        executor = MagicMock()
        executor.query.return_value = [_tabelog_row(1), _tabelog_row(2, name=None)]

        with pytest.raises(DecodeFailure):
            TabelogFetcher().fetch(executor, "Tokyo", 0)

    def test_missing_column(self):
        row = _michelin_row(1)
        del row["price_category"]
        executor = MagicMock()
        executor.query.return_value = [row]

        with pytest.raises(DecodeFailure, match="price_category"):
            MichelinFetcher().fetch(executor, "Kyoto", 0)

    def test_wrong_price_type(self):
        executor = MagicMock()
        executor.query.return_value = [_tabelog_row(1, price_range="[1000,2000)")]

        with pytest.raises(DecodeFailure):
            TabelogFetcher().fetch(executor, "Tokyo", 0)

    def test_query_failure_propagates(self):
        executor = MagicMock()
        executor.query.side_effect = QueryFailure("boom")

        with pytest.raises(QueryFailure):
            TabelogFetcher().fetch(executor, "Tokyo", 0)


class TestFetchMeta:
    """Fetcher.fetch_meta のテスト."""

    def test_rows_and_count(self):
        executor = MagicMock()
        executor.query.return_value = [_meta_row(1), _meta_row(2)]
        executor.query_row.return_value = {"count": 2}

        meta = TabelogFetcher().fetch_meta(executor, "Tokyo")

        assert isinstance(meta, MetaPage)
        assert meta.count == 2
        assert [m.id for m in meta.data] == [1, 2]
        assert meta.data[0].cuisines == ("A", "B")

        sql, params, _ = executor.query.call_args.args
        assert "LIMIT" not in sql
        assert "ORDER BY id" in sql
        assert params == ("Tokyo",)
        count_sql, count_params, _ = executor.query_row.call_args.args
        assert count_sql == "SELECT COUNT(*) AS count FROM tabelog WHERE region = %s"
        assert count_params == ("Tokyo",)

    def test_cancel_token_passed_to_both_queries(self):
        """行取得と件数取得の両方に同じキャンセル信号が渡ること."""
        executor = MagicMock()
        executor.query.return_value = [_meta_row(1)]
        executor.query_row.return_value = {"count": 1}
        token = CancelToken()

        TabelogFetcher().fetch_meta(executor, "Tokyo", token)

        assert executor.query.call_args.args[2] is token
        assert executor.query_row.call_args.args[2] is token

    def test_michelin_meta_url_completed(self):
        executor = MagicMock()
        executor.query.return_value = [_meta_row(1, url="/restaurant/kyoto/r1")]
        executor.query_row.return_value = {"count": 1}

        meta = MichelinFetcher().fetch_meta(executor, "Kyoto")

        assert meta.data[0].url == "https://guide.michelin.com/restaurant/kyoto/r1"

    def test_count_may_exceed_rows(self):
        """行取得と件数取得の間に追加があった場合."""
        executor = MagicMock()
        executor.query.return_value = [_meta_row(1)]
        executor.query_row.return_value = {"count": 2}

        meta = TabelogFetcher().fetch_meta(executor, "Tokyo")

        assert len(meta.data) <= meta.count

    def test_wire_shape(self):
        executor = MagicMock()
        executor.query.return_value = [_meta_row(1)]
        executor.query_row.return_value = {"count": 1}

        d = TabelogFetcher().fetch_meta(executor, "Tokyo").to_dict()

        assert d["count"] == 1
        assert d["data"][0]["cuisines"] == ["A", "B"]

    def test_missing_count_row(self):
        executor = MagicMock()
        executor.query.return_value = []
        executor.query_row.return_value = None

        with pytest.raises(DecodeFailure):
            TabelogFetcher().fetch_meta(executor, "Tokyo")

    def test_count_failure_discards_rows(self):
        executor = MagicMock()
        executor.query.return_value = [_meta_row(1)]
        executor.query_row.side_effect = QueryFailure("count failed")

        with pytest.raises(QueryFailure):
            TabelogFetcher().fetch_meta(executor, "Tokyo")
