"""Task delegation service: interpret, route, execute, and track user tasks."""

__version__ = "0.1.0"
