import uuid


def new_record_id() -> str:
    """Opaque string id, matching the document-store style ids used by clients."""
    return uuid.uuid4().hex
