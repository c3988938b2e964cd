"""Temporal worker entry point for identity resolution."""
