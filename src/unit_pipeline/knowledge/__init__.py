"""Conversational units and the knowledge extracted from them."""
