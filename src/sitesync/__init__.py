"""Live, persisted object-graph synchronization for site pages and trees."""

__version__ = "0.1.0"
