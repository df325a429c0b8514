"""SQLite schema definitions for the object catalog."""

SCHEMA_VERSION = 1

CREATE_TABLES = [
    # Objects table - one row per fully committed (ciphertext + sidecar) object
    """
    CREATE TABLE IF NOT EXISTS objects (
        id TEXT PRIMARY KEY,
        display_name TEXT NOT NULL,
        original_name TEXT NOT NULL,
        plaintext_size INTEGER NOT NULL,
        ciphertext_size INTEGER NOT NULL,
        ciphertext_path TEXT NOT NULL UNIQUE,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    # Schema version tracking
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_objects_created ON objects(created_at)",
]


def get_init_schema():
    """Return the list of statements that create the schema."""
    return (
        CREATE_TABLES
        + CREATE_INDEXES
        + [f"INSERT OR IGNORE INTO schema_version (version) VALUES ({SCHEMA_VERSION})"]
    )

