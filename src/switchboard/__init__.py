"""Switchboard: routing and orchestration core for LLM backends."""

__version__ = "0.3.0"
