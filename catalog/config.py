"""設定モジュール: 環境変数・定数定義."""

import os
from pathlib import Path

from dotenv import load_dotenv

from catalog.errors import ConfigurationError

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# --- Supabase (Postgres) ---
DB_URL_ENV = "SUPABASE_DB_URL"
CONNECT_TIMEOUT = 10  # 秒

# --- コネクションプール ---
POOL_MIN_CONNECTIONS = int(os.environ.get("CATALOG_POOL_MIN", "1"))
POOL_MAX_CONNECTIONS = int(os.environ.get("CATALOG_POOL_MAX", "10"))

# --- ページング ---
PAGE_SIZE = 10

# --- 正規化 ---
CUISINE_DELIMITER = "、"
MICHELIN_ORIGIN = "https://guide.michelin.com"
NO_PRICE = "No Price"

# --- キャッシュ ---
CACHE_TTL_SECONDS = float(os.environ.get("CATALOG_CACHE_TTL", "300"))
CACHE_MAX_ENTRIES = int(os.environ.get("CATALOG_CACHE_MAX_ENTRIES", "1024"))

# --- ログ ---
LOG_DIR = _PROJECT_ROOT / "logs"


def load_db_url() -> str:
    """接続文字列を環境変数から取得する.

    Raises:
        ConfigurationError: SUPABASE_DB_URL が未設定の場合
    """
    db_url = os.environ.get(DB_URL_ENV, "").strip()
    if not db_url:
        raise ConfigurationError(f"環境変数 {DB_URL_ENV} を設定してください")
    return db_url
