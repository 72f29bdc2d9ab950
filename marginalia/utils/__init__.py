"""Shared utilities: logging, errors, concurrency, and text helpers."""
