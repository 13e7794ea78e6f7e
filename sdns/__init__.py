"""Building blocks for a privacy-focused DNS server: caches, routing, middleware and an HTTP API."""

__version__ = "0.1.0"