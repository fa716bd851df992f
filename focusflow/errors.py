from __future__ import annotations


class StoreError(RuntimeError):
    """Failure reported by the document store."""


class InvalidPathError(StoreError):
    """Path does not address a document or a collection."""


class DocumentNotFoundError(StoreError):
    """Partial update addressed a document that does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Document not found: {path}")
        self.path = path


class OrderKeysExhaustedError(ValueError):
    """No float key fits strictly between two neighbours any more."""
