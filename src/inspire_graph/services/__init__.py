"""サービス層."""
