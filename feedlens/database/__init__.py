"""SQLite connection pool, schema and record models."""
