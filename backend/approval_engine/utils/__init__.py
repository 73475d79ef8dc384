"""Logging, identifier and clock helpers shared across the engine"""
from .logger import get_logger, setup_logging
from .idgen import generate_id, generate_correlation_id
from .time import utc_now, ensure_utc, format_iso, parse_iso, business_date

__all__ = [
    "business_date",
    "ensure_utc",
    "format_iso",
    "generate_correlation_id",
    "generate_id",
    "get_logger",
    "parse_iso",
    "setup_logging",
    "utc_now",
]
