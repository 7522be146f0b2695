from io import BytesIO

from PIL import Image, ImageFont

from quotelinks.metadata import ArticleMetadata
from quotelinks.og_image import FontCache

IMAGE_HOST = "https://img.example.com"


def tiny_png(color="#3ea8ff") -> bytes:
    buf = BytesIO()
    Image.new("RGB", (4, 4), color).save(buf, format="PNG")
    return buf.getvalue()


class DefaultFonts(FontCache):
    """Pillow's bundled font at every size; no blob store access."""

    def __init__(self):
        super().__init__(store_factory=lambda: None)

    def load(self):
        return {}

    def font(self, family, size):
        return ImageFont.load_default(size=size)


class StubExtractor:
    def __init__(self, meta=None):
        self.meta = meta or ArticleMetadata("Writing good tests", "alice", None)
        self.calls = []

    def extract(self, url):
        self.calls.append(url)
        return self.meta


class StubRenderer:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def render(self, quote, title, author, author_avatar_url=None):
        self.calls.append((quote, title, author, author_avatar_url))
        if self.error:
            raise self.error
        return tiny_png()
