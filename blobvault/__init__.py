"""Metadata bookkeeping for a content-addressed blob store: tags, entry states, tables and deferred deletion."""

__version__ = "0.1.0"

__all__ = ["delete_set", "entry_state", "meta", "options", "peekable", "tables", "util"]