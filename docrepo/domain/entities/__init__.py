from .document import DocumentIdentity, HasParent, Identity, ParentedDocument

__all__ = [
    "DocumentIdentity",
    "HasParent",
    "Identity",
    "ParentedDocument",
]
