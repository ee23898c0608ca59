"""Shared helpers: errors, rate limiting, identifiers and time budgets."""
