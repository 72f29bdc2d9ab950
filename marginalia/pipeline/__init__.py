"""Ingestion pipeline and progress broadcasting."""
