"""Database layer: schema and repositories."""
