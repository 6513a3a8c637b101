"""Durable task orchestration for LLM-assisted conversational unit processing."""

__version__ = "0.1.0"
