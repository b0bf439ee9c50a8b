"""
FastAPI server for product scraping and Shopify export.

- POST /api/scrape     -> fetch a product page, extract, cache, return the product
- POST /api/export     -> Shopify CSV for a product (attachment)
- GET  /api/products   -> cached product by url
- GET  /api/history    -> most recently scraped urls
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from urllib.parse import urlsplit

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse, Response
from pydantic import BaseModel

from errors import (
    BotProtectionError,
    ExtractionError,
    NetworkError,
    ProductDataError,
    ScrapingError,
    URLValidationError,
    error_response,
)
from exporter import EXPORT_FILENAME, serialize, to_csv_text
from extractor import extract
from fetcher import fetch_page, normalize_url
from models import ProductRecord, StoredProduct
from storage import MemStorage
from taxonomy import CATEGORY_TABLE_FILE, load_category_table, resolve

logger = logging.getLogger("server")

ALLOWED_HOST = "trendyol.com"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ScrapeRequest(BaseModel):
    url: str


class ExportRequest(BaseModel):
    product: ProductRecord


def validate_product_url(url: str) -> str:
    """Normalize and check that the url points at the supported store."""
    if not url or not url.strip():
        raise URLValidationError("A product url is required")
    url = normalize_url(url)
    host = (urlsplit(url).hostname or "").lower()
    if host != ALLOWED_HOST and not host.endswith("." + ALLOWED_HOST):
        raise URLValidationError(f"Only {ALLOWED_HOST} product urls are supported")
    return url


# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.category_table = load_category_table(CATEGORY_TABLE_FILE)
    app.state.store = MemStorage()
    yield


app = FastAPI(
    title="Product Export API",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
    max_age=86400,
)


async def _handle_error(request: Request, exc: Exception) -> ORJSONResponse:
    status, payload = error_response(exc)
    headers = {}
    if isinstance(exc, BotProtectionError) and exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)
    return ORJSONResponse(status_code=status, content=payload, headers=headers)


for _exc_class in (
    ExtractionError,
    ScrapingError,
    URLValidationError,
    ProductDataError,
    BotProtectionError,
    NetworkError,
):
    app.add_exception_handler(_exc_class, _handle_error)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.post("/api/scrape", response_model=StoredProduct)
async def scrape(body: ScrapeRequest, request: Request):
    """Fetch a product page and return the extracted, cached product."""
    url = validate_product_url(body.url)
    store: MemStorage = request.app.state.store

    store.reset()
    page = await fetch_page(url)
    # lxml parsing and the field chains are CPU-bound
    record = await asyncio.to_thread(extract, page, url=url)
    return store.save(record)


@app.post("/api/export")
async def export(body: ExportRequest, request: Request):
    """Return the Shopify import CSV for one product."""
    match = resolve(body.product.categories, request.app.state.category_table)
    rows = serialize(body.product, match.config)
    logger.info("Exporting '%s' (%s, %d rows)", body.product.title, match.resolution, len(rows))
    return Response(
        content=to_csv_text(rows),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )


@app.get("/api/products", response_model=StoredProduct)
async def get_product(url: str, request: Request):
    """Return the cached product for a url."""
    product = request.app.state.store.get(normalize_url(url))
    if product is None:
        raise ScrapingError("Product not found", status=404, details=url)
    return product


@app.get("/api/history", response_model=list[str])
async def history(request: Request):
    """Most recently scraped urls, newest first."""
    return request.app.state.store.history()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host="127.0.0.1", port=8000)
