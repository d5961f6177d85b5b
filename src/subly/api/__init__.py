"""Read-only data API for frontends and the CLI."""

from subly.api.data_api import DataAggregator

__all__ = ["DataAggregator"]
