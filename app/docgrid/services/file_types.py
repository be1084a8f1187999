"""
File-type classification for extraction routing.
"""

from ..models import FileType

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp"})


def classify_file_type(mime_type: str | None, extension: str | None = None) -> FileType:
    """
    Map a MIME type and/or file extension to a routing category.

    PDF wins over image when both match. Anything unrecognized is
    ``FileType.UNKNOWN``, which the strategy chain routes like an image.

    Args:
        mime_type: MIME type reported by storage (e.g. "application/pdf").
        extension: File extension with or without the leading dot.

    Returns:
        The detected FileType.
    """
    mime = (mime_type or "").strip().lower()
    ext = (extension or "").strip().lower().lstrip(".")

    if "pdf" in mime or ext == "pdf":
        return FileType.PDF

    if mime.startswith("image/") or ext in IMAGE_EXTENSIONS:
        return FileType.IMAGE

    return FileType.UNKNOWN
