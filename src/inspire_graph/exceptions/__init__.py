"""inspire-graph共通例外クラス."""


class InspireGraphException(Exception):
    """inspire-graphの基底例外クラス."""

    pass


class ConfigurationError(InspireGraphException):
    """設定エラー."""

    pass


class ExternalAPIError(InspireGraphException):
    """外部API関連エラー."""

    pass


class NetworkError(ExternalAPIError):
    """通信・HTTPエラー."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """初期化.

        Args:
            message: エラーメッセージ
            status_code: HTTPステータス（通信失敗時はNone）
        """
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(NetworkError):
    """429応答が再試行上限を超えた."""

    pass


class AdmissionTimeout(InspireGraphException):
    """レート制限キューの待機時間超過."""

    pass


class AbortError(InspireGraphException):
    """呼び出し元によるキャンセル."""

    pass


class CacheError(InspireGraphException):
    """キャッシュ関連エラー."""

    pass


class CacheCorruption(CacheError):
    """読み取り不能なキャッシュエントリ."""

    pass


class SchemaMismatch(CacheError):
    """キャッシュスキーマのバージョン不一致."""

    pass


class NoSeedsError(InspireGraphException):
    """有効なシード論文がない."""

    def __init__(self, message: str = "No seed papers provided") -> None:
        """初期化."""
        super().__init__(message)
