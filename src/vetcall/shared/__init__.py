"""Shared infrastructure: config-driven database, logging, errors."""
