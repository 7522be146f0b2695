"""Article metadata extraction.

Article pages embed their render state as JSON in a
``<script id="__NEXT_DATA__">`` tag. Title, author username and avatar are
read from that payload rather than from meta tags, which carry the site
name instead of the author.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

import requests
from bs4 import BeautifulSoup, Tag

from quotelinks.config import HTTP_TIMEOUT

logger = logging.getLogger("quotelinks.metadata")

NEXT_DATA_ID = "__NEXT_DATA__"
TITLE_PATH = ("props", "pageProps", "article", "title")
AUTHOR_PATH = ("props", "pageProps", "user", "username")
AVATAR_PATH = ("props", "pageProps", "user", "avatarUrl")

TITLE_UNAVAILABLE = "title unavailable"
AUTHOR_UNAVAILABLE = "author unavailable"


@dataclass(frozen=True)
class ArticleMetadata:
    title: str
    author: str
    author_avatar_url: str | None = None
    degraded: bool = False

    @classmethod
    def unavailable(cls) -> "ArticleMetadata":
        return cls(TITLE_UNAVAILABLE, AUTHOR_UNAVAILABLE, None, degraded=True)


class MetadataError(RuntimeError):
    """Raised internally when a page cannot be fetched or parsed."""


def sanitize(text: str) -> str:
    return text.replace("<", "&lt;").replace(">", "&gt;")


def _dig(data: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def parse_next_data(html: str) -> dict[str, Any]:
    soup = BeautifulSoup(html, "html.parser")
    script = soup.find("script", id=NEXT_DATA_ID)
    if not isinstance(script, Tag) or not script.string:
        raise MetadataError(f"Could not find {NEXT_DATA_ID} script tag")
    try:
        payload = json.loads(script.string)
    except json.JSONDecodeError as ex:
        raise MetadataError(f"Invalid {NEXT_DATA_ID} payload: {ex}") from ex
    if not isinstance(payload, dict):
        raise MetadataError(f"Unexpected {NEXT_DATA_ID} payload type")
    return payload


def metadata_from_html(html: str) -> ArticleMetadata:
    payload = parse_next_data(html)
    title = _dig(payload, TITLE_PATH)
    author = _dig(payload, AUTHOR_PATH)
    if not isinstance(title, str) or not title or not isinstance(author, str) or not author:
        raise MetadataError(f"Could not extract title or author from {NEXT_DATA_ID}")
    avatar = _dig(payload, AVATAR_PATH)
    return ArticleMetadata(
        title=sanitize(title),
        author=sanitize(author),
        author_avatar_url=avatar if isinstance(avatar, str) and avatar else None,
    )


class MetadataExtractor:
    """Fetches an article page and recovers its title, author and avatar.

    The URL must already be checked against the allowed source origin.
    ``extract`` never raises: any failure yields ``ArticleMetadata.unavailable()``.
    """

    def __init__(self, timeout: float = HTTP_TIMEOUT, session: requests.Session | None = None):
        self.timeout = timeout
        self.http = session or requests

    def fetch_html(self, url: str) -> str:
        try:
            resp = self.http.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as ex:
            raise MetadataError(f"Failed to fetch URL: {ex}") from ex
        return resp.text

    def extract(self, url: str) -> ArticleMetadata:
        try:
            return metadata_from_html(self.fetch_html(url))
        except Exception as ex:
            logger.warning("Metadata unavailable for %s: %s", url, ex)
            return ArticleMetadata.unavailable()


def get_extractor() -> MetadataExtractor:
    return MetadataExtractor()
