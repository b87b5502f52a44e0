"""DevPath progression engine."""
