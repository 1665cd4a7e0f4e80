"""Audible catalog search client.

Queries the Audible product catalog API and returns flat result dicts
for fuzzy matching. Network and HTTP failures return an empty list: the
online lookup is optional and its absence is never an error.
"""

import re

import httpx
from loguru import logger

log = logger.bind(stage="audible")

MAX_RESULTS = 10
_RESPONSE_GROUPS = "category_ladders,contributors,media,product_desc,product_attrs,series"
_COVER_SIZES = ("1024", "500")
_HTML_TAG_RE = re.compile(r"<[^>]+>")


def search(query: str, region: str = "com", timeout: float = 30.0) -> list[dict]:
    """Search the catalog of one Audible marketplace.

    Each result dict contains: asin, title, authors (list), narrators (list),
    series, position, year, cover_url, description, genres (list).
    """
    url = f"https://api.audible.{region}/1.0/catalog/products"
    params = {
        "keywords": query,
        "num_results": str(MAX_RESULTS),
        "products_sort_by": "Relevance",
        "response_groups": _RESPONSE_GROUPS,
        "image_sizes": ",".join(reversed(_COVER_SIZES)),
    }
    log.debug(f"Audible search: query={query!r} region={region}")

    try:
        resp = httpx.get(url, params=params, timeout=timeout)
        resp.raise_for_status()
        products = resp.json().get("products") or []
    except (httpx.HTTPError, ValueError) as e:
        log.warning(f"Audible API error: {e}")
        return []

    results = [_flatten_product(p) for p in products]
    log.debug(f"Audible results: {len(results)} products")
    return results


def _names(people: list[dict] | None) -> list[str]:
    return [person.get("name", "") for person in people or []]


def _flatten_product(product: dict) -> dict:
    series = _pick_best_series(product.get("series") or []) or {}
    images = product.get("product_images") or {}
    cover_url = next((images[size] for size in _COVER_SIZES if images.get(size)), "")
    return {
        "asin": product.get("asin", ""),
        "title": product.get("title") or "",
        "authors": _names(product.get("authors")),
        "narrators": _names(product.get("narrators")),
        "series": series.get("title", ""),
        "position": series.get("sequence", ""),
        "year": (product.get("release_date") or "")[:4],
        "cover_url": cover_url,
        "description": _strip_html(product.get("publisher_summary") or ""),
        "genres": _extract_genres(product.get("category_ladders") or []),
    }


def _pick_best_series(series_list: list[dict]) -> dict | None:
    """Pick the most specific series when Audible returns several.

    A sub-series carries a lower sequence number than its umbrella
    super-series, so the lowest position wins. Non-numeric sequences
    sort last.
    """
    def position(entry: dict) -> float:
        try:
            return float(entry.get("sequence") or "")
        except ValueError:
            return float("inf")

    return min(series_list, key=position, default=None)


def _extract_genres(category_ladders: list[dict]) -> list[str]:
    """Category names from the first ladder, most general first."""
    if not category_ladders:
        return []
    return [step["name"] for step in category_ladders[0].get("ladder", []) if step.get("name")]


def _strip_html(text: str) -> str:
    return _HTML_TAG_RE.sub("", text).strip()
