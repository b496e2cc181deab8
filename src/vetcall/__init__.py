"""Veterinary discharge-call orchestration service."""

__version__ = "0.1.0"
