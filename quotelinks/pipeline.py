"""Link issuance: metadata -> image -> blob -> record.

The rendered image is stored before the record that points at it is
committed, so a visible record always has a retrievable image. Any
failure aborts the whole issuance; an already stored blob is left in
place since no record references it.
"""

import logging
import time
from dataclasses import dataclass
from urllib.parse import quote as url_quote

from sqlalchemy.orm import Session

from quotelinks import crud, models
from quotelinks.blobstore import LocalBlobStore
from quotelinks.metadata import MetadataExtractor
from quotelinks.og_image import OgpImageRenderer

logger = logging.getLogger("quotelinks.pipeline")

IMAGE_CONTENT_TYPE = "image/png"

# Characters encodeURIComponent leaves unescaped
URI_COMPONENT_SAFE = "-_.!~*'()"


class LinkIssuanceError(RuntimeError):
    """Raised when a link could not be issued. The cause is chained."""


@dataclass(frozen=True)
class IssuedLink:
    id: str
    ogp_image_url: str


def image_key(link_id: str) -> str:
    return f"ogp/{link_id}.png"


def text_fragment_url(url: str, quote: str) -> str:
    return f"{url}#:~:text={url_quote(quote, safe=URI_COMPONENT_SAFE)}"


def now_ms() -> int:
    return int(time.time() * 1000)


def issue_link(
    db: Session,
    quote: str,
    url: str,
    *,
    extractor: MetadataExtractor,
    renderer: OgpImageRenderer,
    blobs: LocalBlobStore,
) -> IssuedLink:
    link_id = None
    try:
        link_id = crud.generate_id(db)
        meta = extractor.extract(url)
        if meta.degraded:
            logger.warning("Issuing %s with unavailable metadata for %s", link_id, url)

        png = renderer.render(quote, meta.title, meta.author, meta.author_avatar_url)

        key = image_key(link_id)
        blobs.put(key, png, IMAGE_CONTENT_TYPE)
        ogp_image_url = blobs.public_url(key)

        crud.insert_link(db, models.QuoteLink(
            id=link_id,
            quote=quote,
            title=meta.title,
            author=meta.author,
            author_avatar_url=meta.author_avatar_url,
            original_url=text_fragment_url(url, quote),
            ogp_image_url=ogp_image_url,
            created_at=now_ms(),
        ))
    except Exception as ex:
        db.rollback()
        raise LinkIssuanceError(f"Failed to issue link {link_id or '<unassigned>'} for {url}") from ex

    logger.info("Issued link %s for %s", link_id, url)
    return IssuedLink(id=link_id, ogp_image_url=ogp_image_url)
