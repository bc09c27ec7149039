from __future__ import annotations


class QuestaError(Exception):
    pass


class DocumentNotFound(QuestaError):
    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class ActionRejected(QuestaError):
    """A user or admin action broke a business rule (balance, cooldown, limits...)."""


class StorageError(QuestaError):
    pass


class NotifyError(QuestaError):
    pass


class BelowMinimum(QuestaError):
    def __init__(self, collection: str, doc_id: str, field: str, value: float):
        super().__init__(f"{collection}/{doc_id}.{field} would drop to {value}")
        self.collection = collection
        self.doc_id = doc_id
        self.field = field
        self.value = value
