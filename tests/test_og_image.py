import threading
from io import BytesIO

import pytest
import requests
from PIL import Image

from quotelinks import og_image
from quotelinks.blobstore import StoredBlob
from quotelinks.og_image import (
    MAX_FONT_SIZE,
    MIN_FONT_SIZE,
    FontCache,
    FontUnavailableError,
    OgpImageRenderer,
    _Painter,
    calculate_font_size,
    get_renderer,
    load_additional_asset,
    placeholder_glyph,
    quote_max_lines,
)

from .helpers import DefaultFonts, tiny_png


class TestCalculateFontSize:
    def test_short_quote_uses_max_size(self):
        assert calculate_font_size(10) == MAX_FONT_SIZE

    def test_max_length_quote_uses_min_size(self):
        assert calculate_font_size(200) == MIN_FONT_SIZE

    def test_interpolates_between_thresholds(self):
        size = calculate_font_size(100)
        assert MIN_FONT_SIZE < size < MAX_FONT_SIZE
        assert size == 48

    def test_monotonic(self):
        sizes = [calculate_font_size(n) for n in range(0, 201)]
        assert sizes == sorted(sizes, reverse=True)


class CountingStore:
    def __init__(self, blobs):
        self.blobs = blobs
        self.gets = 0
        self.lock = threading.Lock()

    def get(self, key):
        with self.lock:
            self.gets += 1
        return self.blobs.get(key)


class TestFontCache:
    KEYS = {"sans": "assets/sans.ttf", "serif": "assets/serif.ttf"}

    def test_fetches_once_under_concurrency(self):
        store = CountingStore({k: StoredBlob(b"font-" + k.encode(), "font/ttf") for k in self.KEYS.values()})
        cache = FontCache(keys=self.KEYS, store_factory=lambda: store)

        results = []
        threads = [threading.Thread(target=lambda: results.append(cache.load())) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.gets == len(self.KEYS)
        assert all(r is results[0] for r in results)
        assert results[0]["sans"] == b"font-assets/sans.ttf"

    def test_missing_font_is_fatal(self):
        store = CountingStore({"assets/sans.ttf": StoredBlob(b"x", "font/ttf")})
        cache = FontCache(keys=self.KEYS, store_factory=lambda: store)
        with pytest.raises(FontUnavailableError):
            cache.load()

    def test_unparsable_font_is_fatal(self):
        store = CountingStore({k: StoredBlob(b"not a font", "font/ttf") for k in self.KEYS.values()})
        cache = FontCache(keys=self.KEYS, store_factory=lambda: store)
        with pytest.raises(FontUnavailableError):
            cache.font("sans", 24)


class FakeResponse:
    def __init__(self, content=b"", status_code=200):
        self.content = content
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class TestAdditionalAssets:
    def test_fetches_icon_by_code_point(self, monkeypatch):
        requested = []

        def fake_get(url, timeout=None):
            requested.append(url)
            return FakeResponse(tiny_png())

        monkeypatch.setattr(og_image.requests, "get", fake_get)
        img = load_additional_asset("emoji", "\U0001F600")
        assert img.mode == "RGBA"
        assert requested[0].endswith("/1f600.png")

    def test_fetch_failure_falls_back_to_placeholder(self, monkeypatch):
        def fake_get(url, timeout=None):
            raise requests.ConnectionError("offline")

        monkeypatch.setattr(og_image.requests, "get", fake_get)
        assert load_additional_asset("emoji", "\U0001F600") is placeholder_glyph()

    def test_undecodable_icon_falls_back_to_placeholder(self, monkeypatch):
        monkeypatch.setattr(og_image.requests, "get", lambda url, timeout=None: FakeResponse(b"<svg/>"))
        assert load_additional_asset("emoji", "\U0001F600") is placeholder_glyph()

    def test_unknown_asset_kind(self):
        assert load_additional_asset("math", "x") is placeholder_glyph()


class TestRenderer:
    def test_renders_fixed_size_png(self):
        renderer = OgpImageRenderer(fonts=DefaultFonts())
        png = renderer.render("Hello world", "Writing good tests", "alice")
        img = Image.open(BytesIO(png))
        assert img.format == "PNG"
        assert img.size == (1200, 630)

    def test_long_quote_renders(self):
        renderer = OgpImageRenderer(fonts=DefaultFonts())
        png = renderer.render("lorem ipsum " * 16 + "dolor sit", "T" * 300, "bob")
        assert Image.open(BytesIO(png)).size == (1200, 630)

    def test_pictographs_go_through_asset_loader(self):
        seen = []

        def loader(code, text):
            seen.append((code, text))
            return placeholder_glyph()

        renderer = OgpImageRenderer(fonts=DefaultFonts(), asset_loader=loader)
        renderer.render("Ship it \U0001F680", "Deploys", "carol")
        assert ("emoji", "\U0001F680") in seen

    def test_avatar_failure_is_not_fatal(self, monkeypatch):
        def fake_get(url, timeout=None):
            raise requests.ConnectionError("offline")

        monkeypatch.setattr(og_image.requests, "get", fake_get)
        renderer = OgpImageRenderer(fonts=DefaultFonts())
        png = renderer.render("Hello", "Title", "dave", "https://img.example.com/avatar.png")
        assert Image.open(BytesIO(png)).size == (1200, 630)

    def test_avatar_is_drawn(self, monkeypatch):
        monkeypatch.setattr(og_image.requests, "get", lambda url, timeout=None: FakeResponse(tiny_png("#ff0000")))
        renderer = OgpImageRenderer(fonts=DefaultFonts())
        png = renderer.render("Hello", "Title", "erin", "https://img.example.com/avatar.png")
        img = Image.open(BytesIO(png)).convert("RGB")
        reds = [px for px in img.getdata() if px[0] > 200 and px[1] < 60 and px[2] < 60]
        assert reds

    def test_missing_fonts_propagate(self):
        class EmptyStore:
            def get(self, key):
                return None

        renderer = OgpImageRenderer(fonts=FontCache(store_factory=EmptyStore))
        with pytest.raises(FontUnavailableError):
            renderer.render("Hello", "Title", "frank")


class EmFont:
    """Advances one em per character, like full-width CJK glyphs."""

    def __init__(self, size):
        self.size = size

    def getlength(self, text):
        return self.size * len(text)


class EmFonts(DefaultFonts):
    def font(self, family, size):
        return EmFont(size)


class TestQuoteLayout:
    @pytest.mark.parametrize("length", [60, 80, 100, 120, 140, 200])
    def test_full_width_quote_fits_quote_area(self, length):
        fonts = EmFonts()
        renderer = OgpImageRenderer(fonts=fonts)
        root = renderer.build_layout("引" * length, "Title", "alice", None)
        quote_area = root.children[0].children[0]

        painter = _Painter(fonts, renderer.asset_loader)
        heights = [painter.measure(child, quote_area.width)[1] for child in quote_area.children]
        content = sum(heights) + quote_area.gap * (len(heights) - 1)
        assert content <= quote_area.height

    def test_overflowing_quote_is_truncated_with_ellipsis(self):
        fonts = EmFonts()
        renderer = OgpImageRenderer(fonts=fonts)
        quote_box = renderer.build_layout("引" * 100, "Title", "alice", None).children[0].children[0].children[1]

        lines = _Painter(fonts, renderer.asset_loader).wrap(quote_box, quote_box.width)
        assert len(lines) == quote_max_lines(quote_box.size)
        assert lines[-1].endswith("…")

    def test_max_lines_shrink_with_font_size(self):
        assert quote_max_lines(MAX_FONT_SIZE) < quote_max_lines(MIN_FONT_SIZE)
        assert quote_max_lines(MIN_FONT_SIZE) == 7


def test_get_renderer_shared_across_threads(monkeypatch):
    monkeypatch.setattr(og_image, "_renderer", None)

    results = []
    threads = [threading.Thread(target=lambda: results.append(get_renderer())) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 8
    assert all(r is results[0] for r in results)
    assert results[0].fonts is get_renderer().fonts
