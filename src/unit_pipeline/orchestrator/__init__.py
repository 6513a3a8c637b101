"""Task records, persistence, event wiring and the async execution loop."""
