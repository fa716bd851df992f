"""FocusFlow: focus timer, project stats and periodic resets over a document store."""

__version__ = "0.1.0"
