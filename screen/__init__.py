"""Blocklist registry, foreground matching and block dispatch."""
