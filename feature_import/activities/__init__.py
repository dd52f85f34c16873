"""Per-feature processing steps.

Each activity performs a single unit of work on one feature:
- validate_geometry: Decode, deduplicate, and repair a geometry
- reproject: Transform horizontal coordinates to the target frame
- resolve_height: Find a base height and its provenance
- transform_height: Convert a height to global ellipsoidal height
"""
