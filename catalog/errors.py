"""例外定義.

コア内部のエラーはすべて CatalogError のサブクラスとして送出し、
ファサードでは握りつぶさずに呼び出し元へ伝播させる。
"""


class CatalogError(Exception):
    """カタログ照会コアの基底例外."""


class ConfigurationError(CatalogError):
    """接続文字列の未設定、未知のソース名など."""


class ConnectionFailure(CatalogError):
    """DB に接続できない."""


class QueryFailure(CatalogError):
    """クエリ実行中のエラー. 元の例外は __cause__ に入る."""


class QueryCancelled(QueryFailure):
    """呼び出し元のキャンセルでクエリが中断された."""


class DecodeFailure(CatalogError):
    """行のカラム構成が想定と一致しない."""
