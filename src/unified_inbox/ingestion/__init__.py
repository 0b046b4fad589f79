"""Ingestion pipeline components."""

from .addresses import normalize_address
from .fetcher import FetchOrchestrator
from .pagination import plan_window, to_sequence_set
from .parser import MimeParser, make_preview

__all__ = [
    "FetchOrchestrator",
    "MimeParser",
    "make_preview",
    "normalize_address",
    "plan_window",
    "to_sequence_set",
]
