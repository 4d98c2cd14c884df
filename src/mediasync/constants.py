"""Project-wide named constants.

Constants defined here replace inline magic numbers across the codebase.
"""

DEFAULT_API_VERSION: str = "2025-01"

# Product identifier metafield used by primary-key lookup (productByIdentifier).
CUSTOM_ID_NAMESPACE: str = "custom"
CUSTOM_ID_KEY: str = "id"

# Page sizes for media listings. A product holds at most 250 media.
MEDIA_PAGE_SIZE: int = 250
VARIANT_MEDIA_PAGE_SIZE: int = 50

# Content types used when the local MIME type cannot be guessed.
DEFAULT_IMAGE_MIME: str = "image/jpeg"
DEFAULT_VIDEO_MIME: str = "video/mp4"

IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic", ".avif"}
)
VIDEO_EXTENSIONS: frozenset[str] = frozenset({".mp4", ".mov", ".webm", ".m4v"})
