"""Shared infrastructure: logging setup and YAML policy configuration."""
