"""
Repository layer for data access operations.

This package resolves record types to repositories, builds locked
queries against them, and exposes the read and mutating operations.
"""
