"""Trending and vibe scores."""
