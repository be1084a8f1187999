"""Request-level errors surfaced by the extraction pipeline and the store."""


class DocumentNotFoundError(Exception):
    """Raised when a document id does not resolve to an active document."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document {document_id} not found")


class CollectionNotFoundError(Exception):
    """Raised when a collection id does not resolve."""

    def __init__(self, collection_id: str):
        self.collection_id = collection_id
        super().__init__(f"Collection {collection_id} not found")


class InvalidRequestError(Exception):
    """Raised on malformed targets or unknown column ids."""

    pass


class PermissionDeniedError(Exception):
    """Raised when the actor may not edit the project."""

    pass
