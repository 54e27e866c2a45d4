"""Database package: SQL-backed profile store."""
