"""Stowage HTTP API."""
