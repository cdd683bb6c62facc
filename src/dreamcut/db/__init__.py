"""SQLite persistence for queue records."""
