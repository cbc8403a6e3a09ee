"""Immo Harvester — real-estate listing acquisition and reconciliation."""

__version__ = "1.0.0"
