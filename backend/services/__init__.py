from .errors import (
    AssemblyError,
    BlobNotFoundError,
    ClipNotFoundError,
    InvalidRequestError,
    StorageError,
    TranscodeError,
)
from .store import stories, videos

__all__ = [
    "videos",
    "stories",
    "AssemblyError",
    "BlobNotFoundError",
    "ClipNotFoundError",
    "InvalidRequestError",
    "StorageError",
    "TranscodeError",
]
