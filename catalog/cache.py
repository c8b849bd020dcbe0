"""照会結果キャッシュ.

ソースごとに1インスタンス。中身は2つのマップ:
  - ページキー (source, region, page) -> 取得済みページ (Item のタプル / MetaPage)
  - カテゴリキー (source, "cuisine", region, cuisine など) -> 件数

読み取りは共有ロック、書き込みは排他ロック。
エントリは TTL で失効し、件数上限を超えると古いものから捨てる。
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from typing import Any, Callable, Hashable, Iterable, Iterator

from catalog.config import CACHE_MAX_ENTRIES, CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)

# メタデータはページを持たないので page=None で登録する
META_PAGE = None


class ReadWriteLock:
    """書き込み優先の読み書きロック. 再入不可."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writing or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


class QueryCache:
    """1ソース分のキャッシュ."""

    def __init__(
        self,
        ttl: float = CACHE_TTL_SECONDS,
        max_entries: int = CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock
        self._lock = ReadWriteLock()
        self._pages: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()
        self._counts: OrderedDict[Hashable, tuple[float, int]] = OrderedDict()
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get_page(self, key: tuple[str, str, int | None], record: bool = True) -> Any | None:
        """ページを取得する. record=False ならヒット率に数えない."""
        return self._get(self._pages, key, record)

    def set_page(self, key: tuple[str, str, int | None], value: Any) -> None:
        self._set(self._pages, key, value)

    def get_count(self, key: Hashable) -> int | None:
        return self._get(self._counts, key)

    def set_count(self, key: Hashable, value: int) -> None:
        self._set(self._counts, key, value)

    def _get(self, store: OrderedDict, key: Hashable, record: bool = True) -> Any | None:
        with self._lock.read():
            entry = store.get(key)

        if entry is not None and self._clock() - entry[0] >= self._ttl:
            with self._lock.write():
                # 別スレッドが書き直していなければ捨てる
                if store.get(key) is entry:
                    del store[key]
            entry = None

        if record:
            with self._stats_lock:
                if entry is None:
                    self._misses += 1
                else:
                    self._hits += 1
        return None if entry is None else entry[1]

    def _set(self, store: OrderedDict, key: Hashable, value: Any) -> None:
        with self._lock.write():
            store.pop(key, None)
            store[key] = (self._clock(), value)
            while len(store) > self._max_entries:
                evicted, _ = store.popitem(last=False)
                logger.debug("キャッシュ上限超過のため削除: %s", evicted)

    def stats(self) -> dict:
        with self._lock.read():
            size = len(self._pages) + len(self._counts)
        with self._stats_lock:
            hits, misses = self._hits, self._misses
        total = hits + misses
        return {
            "size": size,
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / total * 100, 1) if total > 0 else 0.0,
        }

    def clear(self) -> None:
        with self._lock.write():
            self._pages.clear()
            self._counts.clear()
        with self._stats_lock:
            self._hits = 0
            self._misses = 0


class CacheRegistry:
    """ソース名 -> QueryCache."""

    def __init__(self, sources: Iterable[str], **cache_options) -> None:
        self._caches = {source: QueryCache(**cache_options) for source in sources}

    def for_source(self, source: str) -> QueryCache:
        return self._caches[source]

    def stats(self) -> dict[str, dict]:
        return {source: cache.stats() for source, cache in self._caches.items()}

    def clear(self) -> None:
        for cache in self._caches.values():
            cache.clear()
