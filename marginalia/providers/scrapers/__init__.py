"""Discourse scrapers: one adapter per external source."""
