"""ソース別レコードを統一アイテムへ変換する純粋関数群."""

from __future__ import annotations

from decimal import Decimal
from typing import Callable

from catalog.config import CUISINE_DELIMITER, MICHELIN_ORIGIN, NO_PRICE
from catalog.models import (
    Item,
    MetaItem,
    MetaRecord,
    MichelinRecord,
    PriceRange,
    TabelogRecord,
)


def split_cuisines(raw: str) -> tuple[str, ...]:
    """料理ジャンル文字列を区切り文字で分割する. 空要素も残す."""
    return tuple(raw.split(CUISINE_DELIMITER))


def format_coordinate(value: float | Decimal) -> str:
    """緯度・経度を丸めずに10進文字列にする.

    float は往復可能な最短表現 (35.0 は "35")。
    """
    if isinstance(value, Decimal):
        return str(value)
    text = repr(float(value))
    if text.endswith(".0"):
        text = text[:-2]
    return text


def format_rank(value: float | Decimal) -> str:
    """tabelog の点数を小数2桁にする."""
    return f"{float(value):.2f}"


def format_price_range(price: PriceRange | None) -> str:
    """価格帯を "¥<下限> ~ <上限>" にする.

    無限の境界は空文字、範囲自体がない (NULL/empty) ときは "No Price"。
    """
    if price is None or price.empty:
        return NO_PRICE
    lower = "" if price.lower is None else str(price.lower)
    upper = "" if price.upper is None else str(price.upper)
    return f"¥{lower} ~ {upper}"


def complete_url(path: str) -> str:
    """michelin のサイト内パスを絶対URLにする."""
    return MICHELIN_ORIGIN + path


def keep_url(url: str) -> str:
    """tabelog の URL はそのまま使う."""
    return url


def normalize_tabelog(r: TabelogRecord) -> Item:
    """tabelog の1行を統一アイテムにする."""
    return Item(
        id=r.id,
        name=r.name,
        cuisines=split_cuisines(r.cuisines),
        lat=format_coordinate(r.lat),
        lng=format_coordinate(r.lng),
        city_area=r.city_area,
        region=r.region,
        rank=format_rank(r.rank),
        price_range=format_price_range(r.price_range),
        img=r.image,
        url=keep_url(r.url),
    )


def normalize_michelin(r: MichelinRecord) -> Item:
    """michelin の1行を統一アイテムにする. 点数と価格帯はそのまま使う."""
    return Item(
        id=r.id,
        name=r.name,
        cuisines=split_cuisines(r.cuisines),
        lat=format_coordinate(r.lat),
        lng=format_coordinate(r.lng),
        city_area=r.area,
        region=r.region,
        rank=r.rank,
        price_range=r.price_category,
        img=r.image,
        url=complete_url(r.url),
    )


def normalize_meta(r: MetaRecord, url_fn: Callable[[str], str] = keep_url) -> MetaItem:
    """メタデータ行を変換する. URL の補完はソースごとに url_fn で指定する."""
    return MetaItem(
        id=r.id,
        name=r.name,
        cuisines=split_cuisines(r.cuisines),
        lat=format_coordinate(r.lat),
        lng=format_coordinate(r.lng),
        img=r.image,
        url=url_fn(r.url),
    )
