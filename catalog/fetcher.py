"""ソース別フェッチャー.

取得戦略:
  1. ページ取得: region で絞り込み、id 昇順で OFFSET 10p LIMIT 10
  2. メタデータ取得: region の全行 + 別クエリで総件数

フェッチャーは状態を持たない。行の蓄積は呼び出しごとのローカルリストで行う。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Callable

from psycopg2.extras import NumericRange

from catalog.config import PAGE_SIZE
from catalog.db import CancelToken, QueryExecutor
from catalog.errors import DecodeFailure
from catalog.models import (
    Item,
    MetaPage,
    MetaRecord,
    MichelinRecord,
    PriceRange,
    TabelogRecord,
)
from catalog.normalizer import (
    complete_url,
    keep_url,
    normalize_meta,
    normalize_michelin,
    normalize_tabelog,
)

logger = logging.getLogger(__name__)

_META_COLUMNS = ("id", "name", "cuisine", "lat", "lng", "image", "url")


def _get(row: dict, key: str, types: tuple[type, ...]):
    """行から型を確認しつつ値を取り出す."""
    try:
        value = row[key]
    except KeyError as e:
        raise DecodeFailure(f"カラム {key} がありません") from e
    # bool は int のサブクラスなので弾く
    if isinstance(value, bool) or not isinstance(value, types):
        raise DecodeFailure(
            f"カラム {key} の型が不正です: {type(value).__name__} (id={row.get('id')})"
        )
    return value


def _text(row: dict, key: str) -> str:
    """文字列カラムを取り出す. NULL は不正."""
    return _get(row, key, (str,))


def _number(row: dict, key: str) -> float | Decimal:
    """数値カラム (float / numeric) を取り出す."""
    return _get(row, key, (int, float, Decimal))


def _price_range(row: dict, key: str) -> PriceRange | None:
    """numrange カラムを PriceRange にする. NULL は None."""
    try:
        value = row[key]
    except KeyError as e:
        raise DecodeFailure(f"カラム {key} がありません") from e
    if value is None:
        return None
    if not isinstance(value, NumericRange):
        raise DecodeFailure(
            f"カラム {key} の型が不正です: {type(value).__name__} (id={row.get('id')})"
        )
    if value.isempty:
        return PriceRange(lower=None, upper=None, empty=True)
    return PriceRange(lower=value.lower, upper=value.upper)


def _decode_meta(row: dict) -> MetaRecord:
    """メタデータ行を MetaRecord にする."""
    return MetaRecord(
        id=_get(row, "id", (int,)),
        name=_text(row, "name"),
        cuisines=_text(row, "cuisine"),
        lat=_number(row, "lat"),
        lng=_number(row, "lng"),
        image=_text(row, "image"),
        url=_text(row, "url"),
    )


class Fetcher(ABC):
    """ソース1つ分のテーブル定義と変換."""

    source: str
    table: str
    columns: tuple[str, ...]
    url_fn: Callable[[str], str]

    @abstractmethod
    def decode(self, row: dict):
        """DB 行をソース別レコードにする."""

    @abstractmethod
    def normalize(self, record) -> Item:
        """ソース別レコードを統一アイテムにする."""

    def fetch(
        self,
        executor: QueryExecutor,
        region: str,
        page: int,
        cancel: CancelToken | None = None,
    ) -> list[Item]:
        """region の page ページ目 (0始まり, 10件) を取得する.

        最終ページより後ろは空リスト。
        """
        sql = (
            f"SELECT {', '.join(self.columns)} FROM {self.table} "
            "WHERE region = %s ORDER BY id OFFSET %s LIMIT %s"
        )
        rows = executor.query(sql, (region, PAGE_SIZE * page, PAGE_SIZE), cancel)

        items: list[Item] = []
        for row in rows:
            items.append(self.normalize(self.decode(row)))

        logger.info("取得完了: source=%s, region=%s, page=%d, %d 件",
                    self.source, region, page, len(items))
        return items

    def fetch_meta(
        self,
        executor: QueryExecutor,
        region: str,
        cancel: CancelToken | None = None,
    ) -> MetaPage:
        """region の全メタデータと総件数を取得する.

        行取得と件数取得は別クエリなので、同時更新があると一致しないことがある。
        """
        sql = (
            f"SELECT {', '.join(_META_COLUMNS)} FROM {self.table} "
            "WHERE region = %s ORDER BY id"
        )
        rows = executor.query(sql, (region,), cancel)
        records = [_decode_meta(row) for row in rows]

        count_row = executor.query_row(
            f"SELECT COUNT(*) AS count FROM {self.table} WHERE region = %s",
            (region,),
            cancel,
        )
        if count_row is None:
            raise DecodeFailure("件数クエリが行を返しませんでした")
        count = _get(count_row, "count", (int,))

        data = tuple(normalize_meta(r, self.url_fn) for r in records)
        logger.info("メタデータ取得完了: source=%s, region=%s, %d/%d 件",
                    self.source, region, len(data), count)
        return MetaPage(data=data, count=count)


class TabelogFetcher(Fetcher):
    source = "tabelog"
    table = "tabelog"
    columns = (
        "id", "name", "cuisine", "lat", "lng", "city_area", "region",
        "rank", "price_range", "image", "url",
    )
    url_fn = staticmethod(keep_url)

    def decode(self, row: dict) -> TabelogRecord:
        return TabelogRecord(
            id=_get(row, "id", (int,)),
            name=_text(row, "name"),
            cuisines=_text(row, "cuisine"),
            lat=_number(row, "lat"),
            lng=_number(row, "lng"),
            city_area=_text(row, "city_area"),
            region=_text(row, "region"),
            rank=_number(row, "rank"),
            price_range=_price_range(row, "price_range"),
            image=_text(row, "image"),
            url=_text(row, "url"),
        )

    def normalize(self, record: TabelogRecord) -> Item:
        return normalize_tabelog(record)


class MichelinFetcher(Fetcher):
    source = "michelin"
    table = "michelin"
    columns = (
        "id", "name", "cuisine", "lat", "lng", "area", "region",
        "rank", "price_category", "image", "url",
    )
    url_fn = staticmethod(complete_url)

    def decode(self, row: dict) -> MichelinRecord:
        return MichelinRecord(
            id=_get(row, "id", (int,)),
            name=_text(row, "name"),
            cuisines=_text(row, "cuisine"),
            lat=_number(row, "lat"),
            lng=_number(row, "lng"),
            area=_text(row, "area"),
            region=_text(row, "region"),
            rank=_text(row, "rank"),
            price_category=_text(row, "price_category"),
            image=_text(row, "image"),
            url=_text(row, "url"),
        )

    def normalize(self, record: MichelinRecord) -> Item:
        return normalize_michelin(record)


_FETCHERS: dict[str, Fetcher] = {
    "tabelog": TabelogFetcher(),
    "michelin": MichelinFetcher(),
}

SOURCES = tuple(_FETCHERS)


def make_fetcher(source: str) -> Fetcher | None:
    """ソース名からフェッチャーを返す. 未知のソースは None."""
    return _FETCHERS.get(source)
