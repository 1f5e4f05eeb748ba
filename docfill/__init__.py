"""docfill: fill Markdown templates from key/value data, marking every field as imported or missing."""

__version__ = "0.3.0"
