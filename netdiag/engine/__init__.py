"""Diagnostics engine: result envelope, socket primitive and dispatcher."""
