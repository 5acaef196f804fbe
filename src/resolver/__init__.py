"""
Resolution of a project's environment variables from the store.

- resolver: Resolver (include matching, overrides, mappings, computed values)
"""

from .resolver import ResolvedVar, Resolver

__all__ = ["ResolvedVar", "Resolver"]
