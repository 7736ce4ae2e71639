"""Chunk Relay: chunked upload reassembly and publishing service."""

__version__ = "0.1.0"
