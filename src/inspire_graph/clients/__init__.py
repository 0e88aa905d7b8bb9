"""外部APIクライアント."""
