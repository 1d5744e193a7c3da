"""timelog: track time on tasks from the command line."""

__version__ = "0.3.0"
