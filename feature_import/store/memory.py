"""In-process ``FeatureStore`` implementation.

Each write takes a single lock, which gives row-level isolation for
concurrent import jobs writing to distinct layers.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from typing import TYPE_CHECKING

from feature_import.core.exceptions import FeatureStoreError
from feature_import.store.base import FeatureStore

if TYPE_CHECKING:
    from feature_import.models.feature import StoredFeature

logger = logging.getLogger("feature_import.store.memory")


class InMemoryFeatureStore(FeatureStore):
    """Dict-backed feature store guarded by a ``threading.Lock``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._collections: dict[str, str] = {}
        self._layers: dict[str, tuple[str, str]] = {}
        self._features: dict[str, StoredFeature] = {}

    def create_collection(self, name: str) -> str:
        collection_id = uuid.uuid4().hex
        with self._lock:
            self._collections[collection_id] = name
        logger.debug("Collection created | collection=%s | name=%s", collection_id, name)
        return collection_id

    def create_layer(self, collection_id: str, name: str) -> str:
        layer_id = uuid.uuid4().hex
        with self._lock:
            if collection_id not in self._collections:
                msg = f"Unknown collection: {collection_id!r}"
                raise FeatureStoreError(msg)
            self._layers[layer_id] = (collection_id, name)
        logger.debug(
            "Layer created | layer=%s | collection=%s | name=%s", layer_id, collection_id, name
        )
        return layer_id

    def has_layer(self, layer_id: str) -> bool:
        with self._lock:
            return layer_id in self._layers

    def insert_feature(self, feature: StoredFeature) -> StoredFeature:
        stored = dataclasses.replace(feature, feature_id=uuid.uuid4().hex)
        with self._lock:
            if feature.layer_id not in self._layers:
                msg = f"Unknown layer: {feature.layer_id!r}"
                raise FeatureStoreError(msg)
            self._features[stored.feature_id] = stored
        return stored

    def get_feature(self, feature_id: str) -> StoredFeature:
        with self._lock:
            try:
                return self._features[feature_id]
            except KeyError:
                msg = f"Unknown feature: {feature_id!r}"
                raise FeatureStoreError(msg) from None

    def update_feature(self, feature: StoredFeature) -> None:
        with self._lock:
            current = self._features.get(feature.feature_id)
            if current is None:
                msg = f"Unknown feature: {feature.feature_id!r}"
                raise FeatureStoreError(msg)
            if current.layer_id != feature.layer_id:
                msg = f"Feature {feature.feature_id!r} cannot move between layers"
                raise FeatureStoreError(msg)
            self._features[feature.feature_id] = feature

    def features_by_layer(self, layer_id: str) -> list[StoredFeature]:
        with self._lock:
            return [f for f in self._features.values() if f.layer_id == layer_id]

    def delete_collection(self, collection_id: str) -> None:
        with self._lock:
            if self._collections.pop(collection_id, None) is None:
                msg = f"Unknown collection: {collection_id!r}"
                raise FeatureStoreError(msg)
            layer_ids = {lid for lid, (cid, _) in self._layers.items() if cid == collection_id}
            for layer_id in layer_ids:
                del self._layers[layer_id]
            feature_ids = [fid for fid, f in self._features.items() if f.layer_id in layer_ids]
            for feature_id in feature_ids:
                del self._features[feature_id]
        logger.info(
            "Collection deleted | collection=%s | layers=%d | features=%d",
            collection_id,
            len(layer_ids),
            len(feature_ids),
        )

    @property
    def collection_count(self) -> int:
        with self._lock:
            return len(self._collections)

    @property
    def layer_count(self) -> int:
        with self._lock:
            return len(self._layers)

    @property
    def feature_count(self) -> int:
        with self._lock:
            return len(self._features)
