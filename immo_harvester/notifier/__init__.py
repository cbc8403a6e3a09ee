"""Immo Harvester — Notifier Package.

Hand-off point for newly inserted listings. Components:
  - NotificationDispatcher: interface consumed by the acquisition pipeline
  - LoggingDispatcher: default implementation that logs a summary
"""

from immo_harvester.notifier.dispatcher import (
    LoggingDispatcher,
    NotificationDispatcher,
    format_listing_line,
)

__all__ = [
    "LoggingDispatcher",
    "NotificationDispatcher",
    "format_listing_line",
]
