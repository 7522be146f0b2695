import logging
import re

from fastapi import Depends, FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from quotelinks import database, models, redirects, schemas
from quotelinks.blobstore import get_blob_store
from quotelinks.config import ALLOWED_SOURCE_ORIGIN, BLOB_DIR, ENVIRONMENT
from quotelinks.metadata import get_extractor
from quotelinks.og_image import get_renderer
from quotelinks.pipeline import LinkIssuanceError, issue_link

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
logger = logging.getLogger("quotelinks")

# --- DB tables ---
models.Base.metadata.create_all(bind=database.engine)

app = FastAPI(
    title="Quote Links",
    description="Share article quotes as links with generated social preview images.",
    version="1.0.0",
)

# --- CORS (article site and browser extensions only) ---
ALLOWED_ORIGINS = [
    re.compile(r"^chrome-extension://.*"),
    re.compile(f"^{re.escape(ALLOWED_SOURCE_ORIGIN)}$"),
]

@app.middleware("http")
async def api_cors(request: Request, call_next):
    if not request.url.path.startswith("/api/"):
        return await call_next(request)

    origin = request.headers.get("origin")
    if request.method == "OPTIONS":
        response = Response(status_code=204)
    else:
        response = await call_next(request)

    if origin and any(p.match(origin) for p in ALLOWED_ORIGINS):
        response.headers["Access-Control-Allow-Origin"] = origin
    response.headers["Access-Control-Allow-Methods"] = "POST, GET, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    response.headers["Vary"] = "Origin"
    return response

@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "detail": jsonable_encoder(exc.errors())},
    )

# ---- Rendered images (public image host in dev) ----
BLOB_DIR.mkdir(parents=True, exist_ok=True)
app.mount("/blobs", StaticFiles(directory=BLOB_DIR), name="blobs")

@app.get("/", include_in_schema=False, response_class=PlainTextResponse)
def index():
    return "Hello from Quote Links!"

@app.get("/favicon.ico", include_in_schema=False)
def favicon():
    return Response(status_code=204)

# Health check (useful for uptime monitors & load balancers)
@app.get("/health", include_in_schema=False)
def health():
    return {"status": "ok", "env": ENVIRONMENT}

# ---------- API ----------
@app.post(
    "/api/ogp",
    response_model=schemas.OgpResponse,
    responses={400: {"model": schemas.ErrorOut}, 500: {"model": schemas.ErrorOut}},
)
def create_ogp(
    req: schemas.OgpRequest,
    db=Depends(database.get_db),
    extractor=Depends(get_extractor),
    renderer=Depends(get_renderer),
    blobs=Depends(get_blob_store),
):
    logger.info("Creating link: url=%s quote_length=%d", req.url, len(req.quote))
    try:
        issued = issue_link(db, req.quote, req.url, extractor=extractor, renderer=renderer, blobs=blobs)
    except LinkIssuanceError:
        logger.exception("Error processing /api/ogp")
        return JSONResponse(status_code=500, content={"error": "Failed to generate OGP link"})
    return schemas.OgpResponse(id=issued.id, ogp_image_url=issued.ogp_image_url)

@app.get("/{link_id}", include_in_schema=False)
def redirect_page(link_id: str, db=Depends(database.get_db)):
    try:
        page = redirects.resolve(db, link_id)
    except Exception:
        logger.exception("Error fetching data for id %s", link_id)
        return PlainTextResponse("Internal Server Error", status_code=500)
    if page is None:
        return PlainTextResponse("Not Found", status_code=404)
    return HTMLResponse(page)
