"""Stowage API middleware."""
