"""FeatureStore abstract base class.

The narrow interface the pipeline needs from the underlying spatial
data store.  The pipeline never encodes geometry itself; it hands
``StoredFeature`` records to the store and reads them back.

Hierarchy: a collection owns layers, a layer owns features.  Deleting a
collection removes its layers and their features.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from feature_import.models.feature import StoredFeature


class FeatureStore(abc.ABC):
    """Abstract spatial data store.

    Implementations raise ``FeatureStoreError`` for unknown identifiers
    and failed writes.
    """

    @abc.abstractmethod
    def create_collection(self, name: str) -> str:
        """Create a collection and return its identifier."""

    @abc.abstractmethod
    def create_layer(self, collection_id: str, name: str) -> str:
        """Create a layer inside *collection_id* and return its identifier."""

    @abc.abstractmethod
    def has_layer(self, layer_id: str) -> bool:
        """Return whether *layer_id* exists."""

    @abc.abstractmethod
    def insert_feature(self, feature: StoredFeature) -> StoredFeature:
        """Persist a new feature row.

        Returns:
            The stored record with its ``feature_id`` assigned.
        """

    @abc.abstractmethod
    def get_feature(self, feature_id: str) -> StoredFeature:
        """Return the feature row with *feature_id*."""

    @abc.abstractmethod
    def update_feature(self, feature: StoredFeature) -> None:
        """Replace an existing feature row (matched by ``feature_id``)."""

    @abc.abstractmethod
    def features_by_layer(self, layer_id: str) -> list[StoredFeature]:
        """Return the features of *layer_id* in insertion order."""

    @abc.abstractmethod
    def delete_collection(self, collection_id: str) -> None:
        """Delete a collection with all its layers and features."""
