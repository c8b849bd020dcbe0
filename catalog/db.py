"""Supabase (Postgres) へのクエリ実行モジュール.

接続は1リクエストにつき1セッション。セッションの取得方法は2通り:
  - connect(): リクエストごとに新規接続し、終了時に閉じる
  - ConnectionPool.session(): プールから借りて、終了時に返す
どちらも読み取り専用・autocommit で接続する。
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager, nullcontext
from typing import Callable, ContextManager, Iterator

import psycopg2
from psycopg2.extensions import QueryCanceledError
from psycopg2.extras import RealDictCursor
from psycopg2.pool import PoolError, ThreadedConnectionPool

from catalog.config import CONNECT_TIMEOUT, POOL_MAX_CONNECTIONS, POOL_MIN_CONNECTIONS
from catalog.errors import ConnectionFailure, QueryCancelled, QueryFailure

logger = logging.getLogger(__name__)


class CancelToken:
    """呼び出し元が渡すキャンセル信号.

    cancel() すると実行中のクエリに対して登録済みのコールバック
    (connection.cancel) が呼ばれる。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def cancel(self) -> None:
        # 登録解除と同じロック内で呼ぶ. 解除後 (接続の返却・クローズ後) には走らない
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            for callback in self._callbacks:
                callback()

    @contextmanager
    def on_cancel(self, callback: Callable[[], None]) -> Iterator[None]:
        """ブロック実行中だけ callback を登録する. キャンセル済みなら即座に中断."""
        with self._lock:
            if self._cancelled:
                raise QueryCancelled("クエリ開始前にキャンセルされました")
            self._callbacks.append(callback)
        try:
            yield
        finally:
            with self._lock:
                self._callbacks.remove(callback)


class QueryExecutor:
    """1つの接続に紐づくクエリ実行器.

    行は RealDictCursor で dict として返す。カーソルは各呼び出しの中で閉じる。
    """

    def __init__(self, conn) -> None:
        self._conn = conn

    def query(self, sql: str, params: tuple = (), cancel: CancelToken | None = None) -> list[dict]:
        """複数行を取得する."""
        return self._execute(sql, params, cancel, single=False)

    def query_row(self, sql: str, params: tuple = (), cancel: CancelToken | None = None) -> dict | None:
        """1行だけ取得する. 該当なしは None."""
        return self._execute(sql, params, cancel, single=True)

    def _execute(self, sql: str, params: tuple, cancel: CancelToken | None, single: bool):
        scope = cancel.on_cancel(self._conn.cancel) if cancel is not None else nullcontext()
        try:
            with scope:
                with self._conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(sql, params)
                    if single:
                        return cur.fetchone()
                    return cur.fetchall()
        except QueryCanceledError as e:
            logger.warning("クエリがキャンセルされました: %s", sql)
            raise QueryCancelled("クエリがキャンセルされました") from e
        except psycopg2.Error as e:
            raise QueryFailure(f"クエリ実行失敗: {e}") from e


SessionFactory = Callable[[], ContextManager[QueryExecutor]]


def _open(dsn: str):
    try:
        conn = psycopg2.connect(dsn, connect_timeout=CONNECT_TIMEOUT)
    except psycopg2.OperationalError as e:
        raise ConnectionFailure(f"DB 接続失敗: {e}") from e
    try:
        conn.set_session(readonly=True, autocommit=True)
    except psycopg2.Error as e:
        conn.close()
        raise ConnectionFailure(f"セッション設定失敗: {e}") from e
    return conn


@contextmanager
def connect(dsn: str) -> Iterator[QueryExecutor]:
    """新規接続を開き、抜けるときに必ず閉じる."""
    conn = _open(dsn)
    logger.debug("DB 接続完了")
    try:
        yield QueryExecutor(conn)
    finally:
        conn.close()


def direct_sessions(dsn: str) -> SessionFactory:
    """リクエストごとに接続し直すセッションファクトリ."""

    def factory() -> ContextManager[QueryExecutor]:
        return connect(dsn)

    return factory


class ConnectionPool:
    """ThreadedConnectionPool のラッパー. session() がセッションファクトリになる."""

    def __init__(
        self,
        dsn: str,
        minconn: int = POOL_MIN_CONNECTIONS,
        maxconn: int = POOL_MAX_CONNECTIONS,
    ) -> None:
        try:
            self._pool = ThreadedConnectionPool(
                minconn, maxconn, dsn, connect_timeout=CONNECT_TIMEOUT
            )
        except psycopg2.OperationalError as e:
            raise ConnectionFailure(f"コネクションプール作成失敗: {e}") from e
        logger.info("コネクションプール作成: min=%d, max=%d", minconn, maxconn)

    @contextmanager
    def session(self) -> Iterator[QueryExecutor]:
        try:
            conn = self._pool.getconn()
        except (PoolError, psycopg2.OperationalError) as e:
            raise ConnectionFailure(f"プールから接続を取得できません: {e}") from e
        try:
            if not conn.autocommit:
                conn.set_session(readonly=True, autocommit=True)
            yield QueryExecutor(conn)
        finally:
            self._pool.putconn(conn, close=bool(conn.closed))

    def close(self) -> None:
        self._pool.closeall()
