"""照会ファサード.

処理フロー (各エントリポイント共通):
  1. ソース名からフェッチャーを決定 (未知なら ConfigurationError)
  2. キャッシュを確認し、ヒットすればそのまま返す
  3. 同じキーを取得中の呼び出しがあれば完了を待ち、キャッシュを再確認
  4. セッションを1つ取得してフェッチャーに委譲
  5. 取得結果をキャッシュに登録

エラーは握りつぶさずに呼び出し元へ伝播させる。失敗した結果はキャッシュしない。
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from contextlib import contextmanager
from typing import Hashable, Iterator

from catalog.cache import META_PAGE, CacheRegistry
from catalog.db import CancelToken, SessionFactory
from catalog.errors import ConfigurationError
from catalog.fetcher import SOURCES, Fetcher, make_fetcher
from catalog.models import Item, MetaPage

logger = logging.getLogger(__name__)


def cuisine_key(source: str, region: str, cuisine: str) -> tuple[str, str, str, str]:
    """料理ジャンル件数のカテゴリキー. 区切り文字を含む値でも衝突しないようタプルにする."""
    return (source, "cuisine", region, cuisine)


class CatalogService:
    """page_query / meta_query の入口.

    同じキーのキャッシュミスが同時に起きた場合、DB へ問い合わせるのは1件だけで、
    残りはその結果をキャッシュから受け取る。

    Args:
        sessions: 呼ぶたびに QueryExecutor を返すコンテキストマネージャを作る関数
        caches: ソース別キャッシュ. 省略時は新規に作る
    """

    def __init__(self, sessions: SessionFactory, caches: CacheRegistry | None = None) -> None:
        self._sessions = sessions
        self._caches = caches if caches is not None else CacheRegistry(SOURCES)
        self._inflight_lock = threading.Lock()
        # キー -> [キー別ロック, 待機中の呼び出し数]
        self._inflight: dict[Hashable, list] = {}

    @property
    def caches(self) -> CacheRegistry:
        return self._caches

    def _resolve(self, source: str) -> Fetcher:
        """ソース名からフェッチャーを決める. 未知なら ConfigurationError."""
        fetcher = make_fetcher(source)
        if fetcher is None:
            raise ConfigurationError(f"未知のソースです: {source}")
        return fetcher

    @contextmanager
    def _single_flight(self, key: Hashable) -> Iterator[None]:
        """同じキーの取得処理を1つずつ実行させる."""
        with self._inflight_lock:
            entry = self._inflight.get(key)
            if entry is None:
                entry = self._inflight[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._inflight_lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._inflight[key]

    def page_query(
        self,
        region: str,
        page: int,
        source: str,
        cancel: CancelToken | None = None,
    ) -> list[Item]:
        """region の page ページ目 (0始まり) を返す."""
        if page < 0:
            raise ValueError(f"page は 0 以上を指定してください: {page}")
        fetcher = self._resolve(source)
        cache = self._caches.for_source(source)
        key = (source, region, page)

        cached = cache.get_page(key)
        if cached is not None:
            logger.debug("キャッシュヒット: %s", key)
            return list(cached)

        with self._single_flight(key):
            # 待っている間に別スレッドが登録済みかもしれない
            cached = cache.get_page(key, record=False)
            if cached is not None:
                return list(cached)

            logger.info("検索中: region=%s, page=%d, source=%s", region, page, source)
            with self._sessions() as executor:
                items = fetcher.fetch(executor, region, page, cancel)

            cache.set_page(key, tuple(items))
        return items

    def meta_query(
        self,
        region: str,
        source: str,
        cancel: CancelToken | None = None,
    ) -> MetaPage:
        """region の全メタデータと総件数を返す."""
        fetcher = self._resolve(source)
        cache = self._caches.for_source(source)
        key = (source, region, META_PAGE)

        cached = cache.get_page(key)
        if cached is not None:
            logger.debug("キャッシュヒット: %s", key)
            return cached

        with self._single_flight(key):
            cached = cache.get_page(key, record=False)
            if cached is not None:
                return cached

            logger.info("メタデータ検索中: region=%s, source=%s", region, source)
            with self._sessions() as executor:
                meta = fetcher.fetch_meta(executor, region, cancel)

            cache.set_page(key, meta)
        return meta

    def cuisine_count(
        self,
        region: str,
        cuisine: str,
        source: str,
        cancel: CancelToken | None = None,
    ) -> int:
        """region 内で cuisine を含む店舗数を返す.

        未キャッシュなら meta_query の結果から region 内の全ジャンルを集計して
        まとめて登録する。
        """
        self._resolve(source)
        cache = self._caches.for_source(source)
        key = cuisine_key(source, region, cuisine)

        cached = cache.get_count(key)
        if cached is not None:
            return cached

        meta = self.meta_query(region, source, cancel)
        counts: Counter[str] = Counter()
        for m in meta.data:
            # 同じ店舗で重複したジャンルは1回だけ数える
            counts.update({c for c in m.cuisines if c})

        for name, n in counts.items():
            cache.set_count(cuisine_key(source, region, name), n)
        if cuisine not in counts:
            cache.set_count(key, 0)
        return counts.get(cuisine, 0)
