"""Alembic migration environment for doratrack."""
