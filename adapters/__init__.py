"""Integrations that sit between the metrics engine and a user interface."""
