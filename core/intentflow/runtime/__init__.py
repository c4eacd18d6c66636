"""Per-request runtime state: contexts, results, progress and the engine."""
