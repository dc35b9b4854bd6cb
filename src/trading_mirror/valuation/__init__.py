"""Valuation read path - portfolio summaries and performance reconstruction."""

from trading_mirror.valuation.reconstructor import (
    PerformancePoint,
    PortfolioPosition,
    PortfolioReconstructor,
    PortfolioSummary,
    build_portfolio_context,
    sample_series_at,
)

__all__ = [
    "PerformancePoint",
    "PortfolioPosition",
    "PortfolioReconstructor",
    "PortfolioSummary",
    "build_portfolio_context",
    "sample_series_at",
]
