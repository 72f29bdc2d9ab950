"""Concrete adapters for the interfaces in ``marginalia.interfaces``."""
