"""
Common utilities for varnish.

Modules:
- patterns: glob matching over dotted keys (`*` is the only wildcard)
- atomic: crash-safe file replacement and permission constants
- paths: data directory layout and environment configuration
- dotenv: .env / example.env parsing and project bootstrap
- formatting: shell quoting, export/.env text, listings
"""

__all__ = [
    "atomic",
    "dotenv",
    "formatting",
    "paths",
    "patterns",
]
