"""Product statistics with a materialized, query-optimized index."""

__version__ = "0.1.0"

__all__ = ["config", "indexer", "models", "service"]
