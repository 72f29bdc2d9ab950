"""Book catalog adapters (Open Library, Google Books)."""
