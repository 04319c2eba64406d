from db.session import document_store
from db.store import DocumentStore


def get_store() -> DocumentStore:
    return document_store
