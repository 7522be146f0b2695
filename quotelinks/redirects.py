"""Redirect pages carrying Open Graph / Twitter Card metadata.

Values are interpolated as stored. Title and author were escaped when
they were extracted; nothing is re-escaped here.
"""

import re

from sqlalchemy.orm import Session

from quotelinks import crud, models

# What a client sends when its template variable was never filled in
UNSUBSTITUTED_ID = "undefined"

ID_PATTERN = re.compile(f"[{re.escape(crud.ALPHABET)}]{{{crud.ID_LENGTH}}}")

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{title}</title>
  <meta property="og:title" content="{title}">
  <meta property="og:description" content="{quote}">
  <meta property="og:image" content="{ogp_image_url}">
  <meta property="og:url" content="{original_url}">
  <meta property="og:type" content="article">
  <meta name="twitter:card" content="summary_large_image">
  <meta name="twitter:title" content="{title}">
  <meta name="twitter:description" content="{quote}">
  <meta name="twitter:image" content="{ogp_image_url}">
  <meta http-equiv="refresh" content="0; url={original_url}">
</head>
<body>
  <p>Redirecting to <a href="{original_url}">{original_url}</a>...</p>
</body>
</html>
"""


def is_lookup_candidate(link_id: str) -> bool:
    return link_id != UNSUBSTITUTED_ID and ID_PATTERN.fullmatch(link_id) is not None


def render_page(link: models.QuoteLink) -> str:
    return PAGE_TEMPLATE.format(
        title=link.title,
        quote=link.quote,
        ogp_image_url=link.ogp_image_url,
        original_url=link.original_url,
    )


def resolve(db: Session, link_id: str) -> str | None:
    """Redirect page for ``link_id``, or None when there is no such link."""
    if not is_lookup_candidate(link_id):
        return None
    link = crud.get_link(db, link_id)
    if link is None:
        return None
    return render_page(link)
