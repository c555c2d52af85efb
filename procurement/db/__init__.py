"""Relational storage for approval requests."""
