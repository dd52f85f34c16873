"""Feature Import & Height-Transformation Pipeline.

Ingests decoded geospatial features tagged with a source coordinate
reference system, repairs their geometry, reprojects the footprint into
the canonical horizontal frame, resolves a base height with datum
provenance, and persists the result with per-feature and per-job status.
"""

__version__ = "0.1.0"
