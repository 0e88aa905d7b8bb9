"""データモデル."""
