"""
Persistent state for varnish: the variable store, project configs, registry.

The store is serialized as YAML and, when enabled, wrapped by the
password-based AES-256-GCM envelope in `state.crypto` before being written
atomically to disk.
"""

from .models import ProjectConfig, Registry, Store

__all__ = ["ProjectConfig", "Registry", "Store"]
