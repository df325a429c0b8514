"""SQLite-backed and in-memory metadata catalogs."""
