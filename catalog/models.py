"""データモデル定義."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class PriceRange:
    """numrange カラムの値. 境界が None のときは無限 (unbounded)."""

    lower: Decimal | None
    upper: Decimal | None
    empty: bool = False


@dataclass
class TabelogRecord:
    """tabelog テーブルの1行."""

    id: int
    name: str
    cuisines: str  # "、" 区切り
    lat: float
    lng: float
    city_area: str
    region: str
    rank: float  # 例: 3.58
    price_range: PriceRange | None  # NULL = 価格なし
    image: str
    url: str  # 絶対URL


@dataclass
class MichelinRecord:
    """michelin テーブルの1行."""

    id: int
    name: str
    cuisines: str
    lat: float
    lng: float
    area: str
    region: str
    rank: str  # 例: "1 Star"
    price_category: str  # 例: "¥¥¥"
    image: str
    url: str  # サイト内パス (例: /restaurant/tokyo/r1)


@dataclass
class MetaRecord:
    """地図表示用のメタデータ行 (両ソース共通)."""

    id: int
    name: str
    cuisines: str
    lat: float
    lng: float
    image: str
    url: str


@dataclass(frozen=True)
class Item:
    """クライアントへ返す統一アイテム."""

    id: int
    name: str
    cuisines: tuple[str, ...]
    lat: str
    lng: str
    city_area: str
    region: str
    rank: str
    price_range: str
    img: str
    url: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "cuisines": list(self.cuisines),
            "lat": self.lat,
            "lng": self.lng,
            "city_area": self.city_area,
            "region": self.region,
            "rank": self.rank,
            "price_range": self.price_range,
            "img": self.img,
            "url": self.url,
        }


@dataclass(frozen=True)
class MetaItem:
    """メタデータ1件."""

    id: int
    name: str
    cuisines: tuple[str, ...]
    lat: str
    lng: str
    img: str
    url: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "cuisines": list(self.cuisines),
            "lat": self.lat,
            "lng": self.lng,
            "img": self.img,
            "url": self.url,
        }


@dataclass(frozen=True)
class MetaPage:
    """地域内の全メタデータと総件数."""

    data: tuple[MetaItem, ...]
    count: int

    def to_dict(self) -> dict:
        return {
            "data": [m.to_dict() for m in self.data],
            "count": self.count,
        }
