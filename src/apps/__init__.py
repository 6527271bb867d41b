"""Application wiring layer: CLI entry points that assemble feeds, drivers and storage."""
