"""Marginalia: a companion for talking about books.

Search the catalogs, gather what readers, critics and communities have
said about a book, and chat with a literary companion grounded in that
discourse.
"""

__version__ = "0.1.0"
