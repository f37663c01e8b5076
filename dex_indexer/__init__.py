"""Blockchain event indexer for an EtherDelta-style order-book exchange."""

from __future__ import annotations

__version__ = "0.1.0"
