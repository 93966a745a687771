"""
External service gateways

- summary: generative-AI session summaries over HTTP (requests)
"""

from .summary import (
    AISummary,
    FALLBACK_SUMMARY,
    LANGUAGE_NAMES,
    SummaryGateway,
    build_statistics,
)

__all__ = [
    'AISummary',
    'FALLBACK_SUMMARY',
    'LANGUAGE_NAMES',
    'SummaryGateway',
    'build_statistics',
]
