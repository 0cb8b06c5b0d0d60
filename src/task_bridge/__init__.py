"""Poll a shared task store and hand queued tasks to a coding agent CLI."""

__version__ = "1.0.0"
