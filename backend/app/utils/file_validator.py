"""
Upload validation helpers for ReelStage.

Checks that run before any byte of an upload touches local storage:
- declared Content-Length against the configured maximum
- declared part content type against the single accepted video MIME type

Both helpers return plain values; the router decides which HTTP status a
failed check maps to.
"""

from python_multipart.multipart import parse_options_header


# Bytes in a kilobyte (for size conversions and comparisons)
BYTES_PER_KB: int = 1024


def parse_media_type(content_type: str | None) -> str:
    """
    Return the bare, lower-cased ``type/subtype`` of a Content-Type value.

    Parameters such as ``; codecs=avc1`` are dropped. A missing or malformed
    value yields an empty string.

    Example:
        >>> parse_media_type("Video/MP4; codecs=avc1")
        'video/mp4'
    """
    media_type, _ = parse_options_header(content_type)
    media_type = media_type.decode("latin-1").strip().lower()

    type_, _, subtype = media_type.partition("/")
    if not type_ or not subtype or "/" in subtype:
        return ""
    return media_type


def is_accepted_content_type(content_type: str | None, accepted: str) -> bool:
    """Check a declared content type against the single accepted media type."""
    return parse_media_type(content_type) == accepted


def exceeds_upload_limit(content_length: str | None, max_size_bytes: int) -> bool:
    """
    Check a declared Content-Length header against the upload limit.

    A missing or non-numeric header is not treated as oversized here; the
    bounded copy during staging enforces the limit on the actual bytes.
    """
    if not content_length:
        return False
    try:
        return int(content_length) > max_size_bytes
    except ValueError:
        return False


def format_file_size(size_bytes: int) -> str:
    """
    Render a byte count for log and error messages.

    Example:
        >>> format_file_size(1 << 30)
        '1.00 GB'
    """
    size = float(size_bytes)
    for unit in ("B", "KB", "MB"):
        if size < BYTES_PER_KB:
            return f"{size:.2f} {unit}" if unit != "B" else f"{int(size)} B"
        size /= BYTES_PER_KB
    return f"{size:.2f} GB"
