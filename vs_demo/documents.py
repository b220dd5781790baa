"""Download helpers for schemas, governance documents and logos."""

import base64
import hashlib
import json
import logging
from typing import Optional

import requests

from .exceptions import DependencyUnavailableError, RemoteServiceError

logger = logging.getLogger("vs_demo.documents")

IMAGE_TYPES = ("image/png", "image/jpeg", "image/svg+xml")
EXTENSION_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".svg": "image/svg+xml",
}


def _download(session, url: str, timeout: float = 30.0) -> requests.Response:
    try:
        response = session.get(url, timeout=timeout, allow_redirects=True)
    except requests.RequestException as e:
        raise DependencyUnavailableError(f"Failed to download {url}: {e}")
    if response.status_code != 200 or not response.content:
        raise RemoteServiceError(
            f"Failed to download {url} (HTTP {response.status_code})",
            status_code=response.status_code,
            body=response.text,
        )
    return response


def download_schema(session, url: str) -> str:
    """Download a JSON schema and return it as compact JSON."""
    response = _download(session, url)
    try:
        schema = response.json()
    except ValueError:
        raise RemoteServiceError(f"Schema at {url} is not JSON", response.status_code, response.text)
    return json.dumps(schema, separators=(",", ":"))


def compute_sri_digest(session, url: str) -> str:
    """SHA-384 subresource-integrity digest of a document: sha384-<base64>."""
    content = _download(session, url).content
    digest = base64.b64encode(hashlib.sha384(content).digest()).decode()
    return f"sha384-{digest}"


def _guess_image_type(url: str) -> Optional[str]:
    path = url.split("?", 1)[0].lower()
    for ext, content_type in EXTENSION_TYPES.items():
        if path.endswith(ext):
            return content_type
    return None


def download_logo_data_uri(session, url: str) -> str:
    """
    Download an image as a data URI (data:<type>;base64,<data>).

    The Content-Type header decides the type; if it is not a supported image
    type the URL extension is used instead.

    Raises:
        RemoteServiceError: Download failed or type undeterminable
    """
    response = _download(session, url)
    content_type = response.headers.get("Content-Type", "").split(";")[0].strip().lower()

    if content_type not in IMAGE_TYPES:
        guessed = _guess_image_type(url)
        if guessed is None:
            raise RemoteServiceError(
                f"Could not determine image content type for {url} (got: {content_type or 'empty'})"
            )
        logger.warning("Content-Type header not image/*; using %s (from URL extension)", guessed)
        content_type = guessed

    encoded = base64.b64encode(response.content).decode()
    return f"data:{content_type};base64,{encoded}"
