"""Spatial data store interface.

- FeatureStore: Abstract base class for collections, layers, and feature rows
- InMemoryFeatureStore: Lock-guarded in-process implementation
"""

from feature_import.store.base import FeatureStore
from feature_import.store.memory import InMemoryFeatureStore

__all__ = ["FeatureStore", "InMemoryFeatureStore"]
