"""レストランカタログ照会: コマンドラインエントリーポイント.

使い方:
  python -m catalog.main page Tokyo 0 --source tabelog
  python -m catalog.main meta Tokyo --source michelin
  python -m catalog.main cuisine Tokyo 寿司 --source tabelog

結果は JSON で標準出力へ、ログは標準エラーとログファイルへ出す。
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from datetime import datetime

from catalog.config import LOG_DIR, load_db_url
from catalog.db import ConnectionPool, direct_sessions
from catalog.errors import CatalogError, ConfigurationError
from catalog.query import CatalogService

EXIT_OK = 0
EXIT_QUERY_ERROR = 1
EXIT_CONFIG_ERROR = 2


def setup_logging() -> None:
    """ロギングの初期設定."""
    LOG_DIR.mkdir(exist_ok=True)
    log_file = LOG_DIR / f"catalog_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def _page_number(value: str) -> int:
    page = int(value)
    if page < 0:
        raise argparse.ArgumentTypeError("page は 0 以上")
    return page


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="catalog", description="レストランカタログ照会")
    parser.add_argument("--source", default="tabelog", help="tabelog または michelin")
    parser.add_argument("--pool", action="store_true", help="コネクションプールを使う")

    sub = parser.add_subparsers(dest="command", required=True)

    page = sub.add_parser("page", help="1ページ (10件) を取得")
    page.add_argument("region")
    page.add_argument("page", type=_page_number, nargs="?", default=0)

    meta = sub.add_parser("meta", help="地域内の全メタデータと総件数を取得")
    meta.add_argument("region")

    cuisine = sub.add_parser("cuisine", help="地域内のジャンル別店舗数を取得")
    cuisine.add_argument("region")
    cuisine.add_argument("cuisine")
    return parser


def execute(service: CatalogService, args: argparse.Namespace):
    """サブコマンドを実行して JSON 化できる値を返す."""
    if args.command == "page":
        return [item.to_dict() for item in service.page_query(args.region, args.page, args.source)]
    if args.command == "meta":
        return service.meta_query(args.region, args.source).to_dict()
    return {
        "region": args.region,
        "cuisine": args.cuisine,
        "count": service.cuisine_count(args.region, args.cuisine, args.source),
    }


def run(argv: list[str] | None = None) -> int:
    """メイン処理. 終了コードを返す."""
    args = build_parser().parse_args(argv)
    setup_logging()
    logger = logging.getLogger(__name__)
    start_time = time.time()

    pool = None
    try:
        db_url = load_db_url()
        if args.pool:
            pool = ConnectionPool(db_url)
            service = CatalogService(pool.session)
        else:
            service = CatalogService(direct_sessions(db_url))
        result = execute(service, args)
    except ConfigurationError as e:
        logger.error("設定エラー: %s", e)
        return EXIT_CONFIG_ERROR
    except CatalogError as e:
        logger.error("照会失敗: %s (%s)", e, type(e).__name__)
        return EXIT_QUERY_ERROR
    finally:
        if pool is not None:
            pool.close()

    print(json.dumps(result, ensure_ascii=False, indent=2))
    logger.info("完了: command=%s, 所要時間: %.2f 秒", args.command, time.time() - start_time)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(run())
