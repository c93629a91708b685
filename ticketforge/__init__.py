"""Stats-gated line selection, edge scoring and ticket assembly."""

__version__ = "1.0.0"
