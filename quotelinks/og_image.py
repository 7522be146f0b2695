"""Social preview (OGP) image rendering.

A card is described as a small tree of styled boxes, measured, painted
onto a Pillow canvas and encoded as PNG. Fonts come from the blob store
and are loaded once per process.
"""

import logging
import threading
import unicodedata
from dataclasses import dataclass, field
from functools import lru_cache
from io import BytesIO
from typing import Callable

import requests
from PIL import Image, ImageDraw, ImageFont

from quotelinks.blobstore import get_blob_store
from quotelinks.config import (
    FONT_LOGO_KEY,
    FONT_SANS_KEY,
    FONT_SERIF_KEY,
    HTTP_TIMEOUT,
    SERVICE_NAME,
)

logger = logging.getLogger("quotelinks.og_image")

WIDTH, HEIGHT = 1200, 630

MAX_FONT_SIZE = 64
MIN_FONT_SIZE = 32
SHORT_QUOTE_THRESHOLD = 50
LONG_QUOTE_THRESHOLD = 150

QUOTE_AREA_HEIGHT = 400
QUOTE_MARK_SIZE = 56
QUOTE_MARK_LINE_HEIGHT = 0.8
QUOTE_LINE_HEIGHT = 1.3
QUOTE_GAP = 8

TWEMOJI_URL = "https://cdnjs.cloudflare.com/ajax/libs/twemoji/15.1.0/72x72/{code}.png"

ACCENT = "#3ea8ff"
INK = "#1f2328"
MUTED = "#6e7781"

ELLIPSIS = "…"
_ZERO_WIDTH = {"\u200d", "\ufe0e", "\ufe0f"}  # ZWJ and variation selectors


class FontUnavailableError(RuntimeError):
    """Raised when a required font asset cannot be loaded."""


def quote_max_lines(size: int) -> int:
    """Lines of quote text that fit in the quote area between both quote marks."""
    marks = 2 * QUOTE_MARK_SIZE * QUOTE_MARK_LINE_HEIGHT
    available = QUOTE_AREA_HEIGHT - marks - 2 * QUOTE_GAP
    return max(int(available // (size * QUOTE_LINE_HEIGHT)), 1)


def calculate_font_size(length: int) -> int:
    """Quote font size: full size for short quotes, shrinking linearly to the minimum."""
    if length <= SHORT_QUOTE_THRESHOLD:
        return MAX_FONT_SIZE
    if length >= LONG_QUOTE_THRESHOLD:
        return MIN_FONT_SIZE
    ratio = (length - SHORT_QUOTE_THRESHOLD) / (LONG_QUOTE_THRESHOLD - SHORT_QUOTE_THRESHOLD)
    return round(MAX_FONT_SIZE - (MAX_FONT_SIZE - MIN_FONT_SIZE) * ratio)


class FontCache:
    """Process-wide font bytes, fetched from the blob store at most once."""

    def __init__(self, keys: dict[str, str] | None = None, store_factory=get_blob_store):
        self.keys = keys or {"sans": FONT_SANS_KEY, "serif": FONT_SERIF_KEY, "logo": FONT_LOGO_KEY}
        self._store_factory = store_factory
        self._lock = threading.Lock()
        self._data: dict[str, bytes] | None = None
        self._faces: dict[tuple[str, int], ImageFont.FreeTypeFont] = {}

    def _fetch_all(self) -> dict[str, bytes]:
        store = self._store_factory()
        data = {}
        for family, key in self.keys.items():
            logger.info("Fetching font from blob store: %s", key)
            blob = store.get(key)
            if blob is None:
                raise FontUnavailableError(f"Font file not found in blob store: {key}")
            data[family] = blob.data
        logger.info("Font data loaded and cached (%s)", ", ".join(data))
        return data

    def load(self) -> dict[str, bytes]:
        if self._data is None:
            with self._lock:
                if self._data is None:
                    self._data = self._fetch_all()
        return self._data

    def font(self, family: str, size: int) -> ImageFont.FreeTypeFont:
        face = self._faces.get((family, size))
        if face is None:
            try:
                face = ImageFont.truetype(BytesIO(self.load()[family]), size)
            except (KeyError, OSError) as ex:
                raise FontUnavailableError(f"Cannot load font {family!r}: {ex}") from ex
            self._faces[(family, size)] = face
        return face


@lru_cache(maxsize=1)
def placeholder_glyph() -> Image.Image:
    img = Image.new("RGBA", (72, 72), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    draw.rounded_rectangle((6, 6, 66, 66), radius=10, outline=MUTED, width=5)
    draw.line((24, 24, 48, 48), fill=MUTED, width=5)
    draw.line((48, 24, 24, 48), fill=MUTED, width=5)
    return img


def load_additional_asset(code: str, text: str, timeout: float = HTTP_TIMEOUT) -> Image.Image:
    """Substitute glyph for characters the text fonts cannot draw.

    ``code`` names the asset kind (only ``"emoji"`` is supported); ``text``
    is the grapheme. Never raises: falls back to a placeholder glyph.
    """
    if code != "emoji" or not text:
        logger.warning("Unsupported additional asset %r for %r", code, text)
        return placeholder_glyph()
    icon = f"{ord(text[0]):x}"
    try:
        resp = requests.get(TWEMOJI_URL.format(code=icon), timeout=timeout)
        resp.raise_for_status()
        img = Image.open(BytesIO(resp.content))
        img.load()
        return img.convert("RGBA")
    except Exception as ex:
        logger.warning("Error fetching Twemoji for %r (%s): %s", text, icon, ex)
        return placeholder_glyph()


def needs_substitute(ch: str) -> bool:
    return unicodedata.category(ch) == "So" or 0x1F000 <= ord(ch) <= 0x1FAFF


@dataclass
class Box:
    """Node of the card layout tree.

    ``kind`` is one of column, row, text, image. ``align`` positions
    children on the cross axis, ``justify`` on the main axis.
    """

    kind: str
    children: list["Box"] = field(default_factory=list)
    text: str = ""
    family: str = "sans"
    size: int = 24
    color: str = INK
    line_height: float = 1.4
    max_lines: int | None = None
    image: Image.Image | None = None
    round: bool = False
    width: int | None = None
    height: int | None = None
    padding: int = 0
    gap: int = 0
    align: str = "start"
    justify: str = "start"
    background: str | None = None
    radius: int = 0


class _Painter:
    def __init__(self, fonts: FontCache, asset_loader: Callable[[str, str], Image.Image]):
        self.fonts = fonts
        self.asset_loader = asset_loader
        self._assets: dict[str, Image.Image] = {}

    # text

    def _segments(self, text: str) -> list[tuple[bool, str]]:
        runs: list[tuple[bool, str]] = []
        for ch in text:
            if ch in _ZERO_WIDTH:
                continue
            sub = needs_substitute(ch)
            if sub or not runs or runs[-1][0]:
                runs.append((sub, ch))
            else:
                runs[-1] = (False, runs[-1][1] + ch)
        return runs

    def _asset(self, ch: str) -> Image.Image:
        if ch not in self._assets:
            self._assets[ch] = self.asset_loader("emoji", ch)
        return self._assets[ch]

    def text_width(self, text: str, family: str, size: int) -> float:
        font = self.fonts.font(family, size)
        return sum(size if sub else font.getlength(run) for sub, run in self._segments(text))

    def wrap(self, box: Box, max_width: float) -> list[str]:
        def width(s):
            return self.text_width(s, box.family, box.size)

        lines = []
        for paragraph in box.text.split("\n"):
            current = ""
            for ch in paragraph:
                if current and width(current + ch) > max_width:
                    cut = current.rfind(" ")
                    if cut > 0 and ch != " ":
                        lines.append(current[:cut])
                        current = current[cut + 1:]
                    else:
                        lines.append(current.rstrip())
                        current = ""
                    if ch == " ":
                        continue
                current += ch
            lines.append(current)

        if box.max_lines and len(lines) > box.max_lines:
            lines = lines[: box.max_lines]
            last = lines[-1]
            while last and width(last + ELLIPSIS) > max_width:
                last = last[:-1]
            lines[-1] = last.rstrip() + ELLIPSIS
        return lines

    # layout

    def measure(self, box: Box, max_width: float) -> tuple[float, float]:
        inner_max = (box.width or max_width) - 2 * box.padding
        if box.kind == "text":
            lines = self.wrap(box, inner_max)
            w = max((self.text_width(line, box.family, box.size) for line in lines), default=0)
            h = len(lines) * box.size * box.line_height
        elif box.kind == "image":
            w, h = box.width or 0, box.height or 0
        else:
            sizes = [self.measure(child, inner_max) for child in box.children]
            gaps = box.gap * max(len(sizes) - 1, 0)
            if box.kind == "row":
                w = sum(s[0] for s in sizes) + gaps
                h = max((s[1] for s in sizes), default=0)
            else:
                w = max((s[0] for s in sizes), default=0)
                h = sum(s[1] for s in sizes) + gaps
        w = box.width if box.width is not None else w + 2 * box.padding
        h = box.height if box.height is not None else h + 2 * box.padding
        return w, h

    def paint(self, canvas: Image.Image, box: Box, x: float, y: float, w: float, h: float) -> None:
        draw = ImageDraw.Draw(canvas)
        if box.background and box.radius:
            draw.rounded_rectangle((x, y, x + w - 1, y + h - 1), radius=box.radius, fill=box.background)
        elif box.background:
            draw.rectangle((x, y, x + w - 1, y + h - 1), fill=box.background)
        x, y = x + box.padding, y + box.padding
        w, h = w - 2 * box.padding, h - 2 * box.padding

        if box.kind == "text":
            self._paint_text(canvas, draw, box, x, y, w)
        elif box.kind == "image" and box.image is not None:
            self._paint_image(canvas, box, x, y)
        elif box.kind in ("row", "column"):
            self._paint_children(canvas, box, x, y, w, h)

    def _paint_children(self, canvas, box: Box, x, y, w, h) -> None:
        horizontal = box.kind == "row"
        sizes = [self.measure(child, w) for child in box.children]
        main_total = w if horizontal else h
        used = sum(s[0] if horizontal else s[1] for s in sizes) + box.gap * max(len(sizes) - 1, 0)
        free = max(main_total - used, 0)

        gap, offset = box.gap, 0.0
        if box.justify == "center":
            offset = free / 2
        elif box.justify == "end":
            offset = free
        elif box.justify == "between" and len(sizes) > 1:
            gap += free / (len(sizes) - 1)

        for child, (cw, ch) in zip(box.children, sizes):
            cross_total, cross_size = (h, ch) if horizontal else (w, cw)
            cross = 0.0
            if box.align == "center":
                cross = (cross_total - cross_size) / 2
            elif box.align == "end":
                cross = cross_total - cross_size
            if horizontal:
                self.paint(canvas, child, x + offset, y + cross, cw, ch)
                offset += cw + gap
            else:
                self.paint(canvas, child, x + cross, y + offset, cw, ch)
                offset += ch + gap

    def _paint_text(self, canvas, draw, box: Box, x, y, w) -> None:
        font = self.fonts.font(box.family, box.size)
        line_h = box.size * box.line_height
        for i, line in enumerate(self.wrap(box, w)):
            lw = self.text_width(line, box.family, box.size)
            cx = x
            if box.align == "center":
                cx = x + (w - lw) / 2
            elif box.align == "end":
                cx = x + w - lw
            cy = y + i * line_h + (line_h - box.size) / 2
            for sub, run in self._segments(line):
                if sub:
                    glyph = self._asset(run).resize((box.size, box.size))
                    canvas.paste(glyph, (round(cx), round(cy)), glyph)
                    cx += box.size
                else:
                    draw.text((cx, cy), run, font=font, fill=box.color)
                    cx += font.getlength(run)

    def _paint_image(self, canvas, box: Box, x, y) -> None:
        size = (box.width or box.image.width, box.height or box.image.height)
        img = box.image.convert("RGBA").resize(size)
        mask = img.getchannel("A")
        if box.round:
            circle = Image.new("L", size, 0)
            ImageDraw.Draw(circle).ellipse((0, 0, size[0] - 1, size[1] - 1), fill=255)
            mask = Image.composite(mask, circle, circle)
        canvas.paste(img, (round(x), round(y)), mask)


class OgpImageRenderer:
    """Renders 1200x630 quote cards as PNG bytes."""

    def __init__(
        self,
        fonts: FontCache | None = None,
        asset_loader: Callable[[str, str], Image.Image] = load_additional_asset,
        timeout: float = HTTP_TIMEOUT,
    ):
        self.fonts = fonts or FontCache()
        self.asset_loader = asset_loader
        self.timeout = timeout

    def fetch_avatar(self, url: str) -> Image.Image | None:
        try:
            resp = requests.get(url, timeout=self.timeout)
            resp.raise_for_status()
            img = Image.open(BytesIO(resp.content))
            img.load()
            return img
        except Exception as ex:
            logger.warning("Avatar %s unavailable, rendering without it: %s", url, ex)
            return None

    def build_layout(self, quote: str, title: str, author: str, avatar: Image.Image | None) -> Box:
        quote_size = calculate_font_size(len(quote))
        logger.info("Quote length: %d, calculated font size: %d", len(quote), quote_size)

        mark = dict(
            kind="text", family="serif", size=QUOTE_MARK_SIZE,
            line_height=QUOTE_MARK_LINE_HEIGHT, color=ACCENT,
        )
        quote_area = Box(
            kind="column", height=QUOTE_AREA_HEIGHT, width=1056, gap=QUOTE_GAP, align="center", justify="center",
            children=[
                Box(text="“", **mark),
                Box(
                    kind="text", text=quote, family="serif", size=quote_size,
                    line_height=QUOTE_LINE_HEIGHT, width=950,
                    max_lines=quote_max_lines(quote_size), align="center",
                ),
                Box(text="”", **mark),
            ],
        )

        author_info = [
            Box(kind="text", text=title, size=28, width=760, max_lines=2, line_height=1.3),
            Box(kind="text", text=f"@{author}", size=24, color=MUTED),
        ]
        byline = [Box(kind="column", gap=4, children=author_info)]
        if avatar is not None:
            byline.insert(0, Box(kind="image", image=avatar, width=72, height=72, round=True))

        footer = Box(
            kind="row", width=1056, justify="between", align="center",
            children=[
                Box(kind="row", gap=20, align="center", children=byline),
                Box(kind="text", text=SERVICE_NAME, family="logo", size=28, color=ACCENT),
            ],
        )

        card = Box(
            kind="column", width=1152, height=582, padding=48, radius=24,
            background="#ffffff", justify="between", children=[quote_area, footer],
        )
        return Box(kind="column", width=WIDTH, height=HEIGHT, padding=24, background=ACCENT, children=[card])

    def render(self, quote: str, title: str, author: str, author_avatar_url: str | None = None) -> bytes:
        self.fonts.load()
        avatar = self.fetch_avatar(author_avatar_url) if author_avatar_url else None
        root = self.build_layout(quote, title, author, avatar)

        canvas = Image.new("RGB", (WIDTH, HEIGHT), "#ffffff")
        painter = _Painter(self.fonts, self.asset_loader)
        painter.paint(canvas, root, 0, 0, WIDTH, HEIGHT)

        buf = BytesIO()
        canvas.save(buf, format="PNG", optimize=True)
        return buf.getvalue()


_renderer: OgpImageRenderer | None = None
_renderer_lock = threading.Lock()

def get_renderer() -> OgpImageRenderer:
    global _renderer
    if _renderer is None:
        with _renderer_lock:
            if _renderer is None:
                _renderer = OgpImageRenderer()
    return _renderer
