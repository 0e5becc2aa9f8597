"""CRUD helpers for the platform tables."""
