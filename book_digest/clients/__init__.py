"""External collaborators: catalog sources and the summarizer contract."""

from .base import CatalogSource, HTTPCatalogSource, Summarizer
from .google_books import GoogleBooksSource
from .open_library import OpenLibrarySource

__all__ = [
    "CatalogSource",
    "GoogleBooksSource",
    "HTTPCatalogSource",
    "OpenLibrarySource",
    "Summarizer",
]
