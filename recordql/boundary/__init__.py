"""
Boundary layer for external system integrations.

Handles all interactions with the stores a query runs against.
Provides query sources and ORM building blocks.
"""
