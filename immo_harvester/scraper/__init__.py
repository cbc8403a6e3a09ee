"""Immo Harvester — Scraper Package.

Retrieval and extraction building blocks used by the providers:
  - HttpRetriever: Async HTTP client with retry and rate limiting
  - BrowserRetriever: Scripted Chromium sessions for rendered pages
  - fields: Declarative field extraction engine
  - normalize: Locale-aware parsing helpers

The acquisition pipeline and the reconciler live in
immo_harvester.scraper.pipeline and immo_harvester.scraper.reconciler.
"""

from immo_harvester.scraper.client import FetchResult, HttpRetriever
from immo_harvester.scraper.fields import FieldSpec, compile_fields, extract, extract_items

__all__ = [
    "FetchResult",
    "FieldSpec",
    "HttpRetriever",
    "compile_fields",
    "extract",
    "extract_items",
]
