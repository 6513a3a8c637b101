"""Span detection, prompt budgeting, model extraction, resolution and claim derivation."""
