"""Study plan engine: schedule synthesis, backlog redistribution and adaptive scoring."""

__version__ = "0.1.0"
