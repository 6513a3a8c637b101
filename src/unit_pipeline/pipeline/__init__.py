"""Stage handlers that make up the unit processing pipeline."""
