"""
Image URL canonicalization.

Turns a raw image reference from page state or markup into a stable,
deduplicatable absolute URL pointing at the highest-resolution rendition,
or rejects it with an empty string.
"""

import logging
import re
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

CDN_ORIGIN = "https://cdn.dsmcdn.com"
# Host-relative product media paths live under /ty<N>/...
CDN_PATH_PREFIX = "/ty"

VIDEO_EXTENSIONS = ("mp4", "webm", "ogg", "mov")
IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "webp")
ORIGINAL_TAG = "_org_zoom"

_VIDEO_EXT_RE = re.compile(r"\.(?:%s)$" % "|".join(VIDEO_EXTENSIONS), re.IGNORECASE)
_IMAGE_EXT_RE = re.compile(r"\.(%s)$" % "|".join(IMAGE_EXTENSIONS), re.IGNORECASE)
_RESIZE_SEGMENT_RE = re.compile(r"/mnresize/\d+/\d+/")
_SIZE_SUFFIX_RE = re.compile(r"_\d+x\d+(?=[^/]*$)")


def normalize_image_url(raw: str) -> str:
    """Canonicalize a raw image URL. Returns "" when the candidate should be discarded.

    Idempotent: normalizing an already-normalized URL returns it unchanged.
    """
    if not isinstance(raw, str):
        return ""
    url = raw.strip()
    if not url:
        return ""

    url = url.split("?", 1)[0].split("#", 1)[0]

    if _VIDEO_EXT_RE.search(url):
        logger.debug("Dropping video asset: %s", url)
        return ""
    if not _IMAGE_EXT_RE.search(url):
        logger.debug("Dropping unsupported image format: %s", url)
        return ""

    if url.startswith("//"):
        url = "https:" + url
    elif url.startswith(CDN_PATH_PREFIX):
        url = CDN_ORIGIN + url
    elif url.startswith("/"):
        # Host-relative outside the CDN: no way to know the origin
        return ""
    elif not re.match(r"^https?://", url, re.IGNORECASE):
        url = "https://" + url

    url = _RESIZE_SEGMENT_RE.sub("/", url)
    url = _SIZE_SUFFIX_RE.sub("", url)

    if ORIGINAL_TAG not in url:
        url = _IMAGE_EXT_RE.sub(ORIGINAL_TAG + r".\1", url)

    if not urlsplit(url).netloc:
        return ""
    return url


def normalize_image_urls(candidates: list[str]) -> list[str]:
    """Normalize candidates, dropping rejects and duplicates while preserving order."""
    seen: dict[str, None] = {}
    for candidate in candidates:
        url = normalize_image_url(candidate)
        if url:
            seen.setdefault(url, None)
    return list(seen)
