"""Configuration helpers for the production quality dashboard."""

# This package collects runtime configuration assets that can be customised
# without touching the application logic (for example the mapping from
# dynamically created source tables to their column layouts).
