"""Core logic: source readers, normalization, dedup, scoring and replay analysis.

This package has no dependency on the database layer. The store and the
import passes import from here.
"""
