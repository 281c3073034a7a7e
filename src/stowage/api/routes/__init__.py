"""Stowage API routes."""
