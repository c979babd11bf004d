"""stepflow: a workflow engine for markdown-embedded node graphs."""

__version__ = "0.1.0"
