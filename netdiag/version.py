"""Version information for netdiag."""

__version__ = "1.0.0"
