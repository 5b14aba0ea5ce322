"""Prism context gateway: tier-gated MCP tools over project transcripts and rules."""

__version__ = "1.0.0"
