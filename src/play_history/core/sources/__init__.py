"""Readers for the two client data sources."""
