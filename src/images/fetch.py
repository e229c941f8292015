"""Remote image download."""

from __future__ import annotations

import http.client
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass

from inkpress import __version__
from inkpress.errors import ImageFetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0

# Bad URL, network and truncated-body failures from urllib and http.client.
FETCH_ERRORS = (OSError, ValueError, http.client.HTTPException)


@dataclass
class FetchedImage:
    """Raw bytes of a downloaded image plus its declared content type."""

    data: bytes
    content_type: str = ""


def fetch_image(url: str, timeout: float = DEFAULT_TIMEOUT) -> FetchedImage:
    """GET an image URL.

    Raises:
        ImageFetchError: On a non-2xx status, timeout, malformed URL (e.g.
            one with whitespace) or a truncated body.
    """
    try:
        req = urllib.request.Request(url, headers={"User-Agent": f"inkpress/{__version__}"})
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            status = getattr(resp, "status", 200)
            if not 200 <= status < 300:
                raise ImageFetchError(f"Failed to download image: HTTP {status}")
            content_type = resp.headers.get("Content-Type", "") or ""
            data = resp.read()
    except urllib.error.HTTPError as exc:
        raise ImageFetchError(f"Failed to download image: HTTP {exc.code}") from exc
    except FETCH_ERRORS as exc:
        raise ImageFetchError(f"Failed to download image: {exc}") from exc

    logger.debug("Fetched %s (%d bytes, %s)", url, len(data), content_type or "no content-type")
    return FetchedImage(data=data, content_type=content_type)
