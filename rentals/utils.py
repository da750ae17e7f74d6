# rentals/utils.py
"""Shared helpers: logging setup, slugs and media URLs."""
import logging
import re
from urllib.parse import quote_plus

from .config import LOG_LEVEL, STORAGE_URL


def get_logger(name=__name__):
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        level=getattr(logging, LOG_LEVEL, logging.INFO)
    )
    return logging.getLogger(name)

logger = get_logger("rentals")

PLACEHOLDER_IMAGE = "https://via.placeholder.com/600x400/4F46E5/FFFFFF?text="


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug or "post"


def media_url(path):
    if not path:
        return None
    if path.startswith(("http://", "https://")):
        return path
    return STORAGE_URL.rstrip("/") + "/" + path.lstrip("/")


def vehicle_image_urls(images, brand, model):
    """Resolve stored image paths, falling back to a labelled placeholder."""
    urls = [media_url(p) for p in (images or []) if p]
    urls = [u for u in urls if u]
    if not urls:
        urls = [PLACEHOLDER_IMAGE + quote_plus(f"{brand} {model}")]
    return urls
