"""HTTP service for the Avatar Registry (FastAPI + SQLite)."""
