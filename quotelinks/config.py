import os
from pathlib import Path

from dotenv import load_dotenv

# Explicitly load .env from project root (parent of quotelinks/)
ENV_PATH = Path(__file__).parent.parent / ".env"
load_dotenv(ENV_PATH)

ENVIRONMENT = os.getenv("ENVIRONMENT", "dev")

DATA_DIR = Path(os.getenv("QUOTELINKS_DATA_DIR") or Path(__file__).parent.parent / "var")
BLOB_DIR = Path(os.getenv("BLOB_DIR") or DATA_DIR / "blobs")

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
PUBLIC_IMAGE_BASE_URL = os.getenv("PUBLIC_IMAGE_BASE_URL", f"{PUBLIC_BASE_URL}/blobs").rstrip("/")

# Only articles on this origin may be quoted
ALLOWED_SOURCE_ORIGIN = os.getenv("ALLOWED_SOURCE_ORIGIN", "https://zenn.dev").rstrip("/")

HTTP_TIMEOUT = float(os.getenv("QUOTELINKS_HTTP_TIMEOUT", 10))

SERVICE_NAME = os.getenv("SERVICE_NAME", "zennquotes")

FONT_SANS_KEY = os.getenv("FONT_SANS_KEY", "assets/NotoSansJP-Regular.ttf")
FONT_SERIF_KEY = os.getenv("FONT_SERIF_KEY", "assets/NotoSerifJP-Regular.ttf")
FONT_LOGO_KEY = os.getenv("FONT_LOGO_KEY", "assets/Inter_28pt-Regular.ttf")
