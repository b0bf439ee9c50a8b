"""
HTML parser for product pages.

Builds the immutable ParsedPage the extractor works on: the parsed markup
tree plus JSON-LD blocks, Open Graph tags, embedded window state objects,
breadcrumb trail and gallery image candidates.

No field decisions are made here; fragments that fail to parse are only
recorded by name so the extractor can report them.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

ROOT_CRUMBS = frozenset({"anasayfa", "ana sayfa", "home", "trendyol"})

GALLERY_SELECTORS = (
    ".product-slide img",
    ".gallery-modal-content img",
    ".base-product-image img",
    ".product-images img",
)


@dataclass(frozen=True)
class ParsedPage:
    """Everything the extractor may read from one fetched product page."""

    html: str
    soup: BeautifulSoup
    url: str = ""
    json_ld: list[dict] = field(default_factory=list)
    og_tags: dict[str, str] = field(default_factory=dict)
    # window global name -> decoded JSON value
    state_fragments: dict[str, Any] = field(default_factory=dict)
    # window globals that were assigned but did not decode
    malformed_fragments: list[str] = field(default_factory=list)
    breadcrumbs: list[str] = field(default_factory=list)
    gallery_images: list[str] = field(default_factory=list)
    page_title: str = ""

    def select_text(self, selector: str) -> str:
        """Stripped text of the first element matching a CSS selector, or ""."""
        el = self.soup.select_one(selector)
        return el.get_text(" ", strip=True) if el else ""


def parse_html(html: str, url: str = "") -> ParsedPage:
    """Parse a product page once and collect every data source the extractor reads."""
    soup = BeautifulSoup(html, "lxml")

    json_ld = _extract_json_ld(soup)
    fragments, malformed = _extract_window_globals(soup)
    title_tag = soup.find("title")

    return ParsedPage(
        html=html,
        soup=soup,
        url=url,
        json_ld=json_ld,
        og_tags=_extract_og_tags(soup),
        state_fragments=fragments,
        malformed_fragments=malformed,
        breadcrumbs=_extract_breadcrumbs(json_ld, soup),
        gallery_images=_extract_gallery_images(soup),
        page_title=title_tag.get_text(strip=True) if title_tag else "",
    )


# ---------------------------------------------------------------------------
# JSON-LD
# ---------------------------------------------------------------------------


def _extract_json_ld(soup: BeautifulSoup) -> list[dict]:
    """Every JSON-LD object on the page, with top-level lists and @graph unpacked."""
    results: list[dict] = []
    for tag in soup.find_all("script", attrs={"type": "application/ld+json"}):
        text = tag.string
        if not text:
            continue
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, TypeError):
            logger.debug("Skipping malformed JSON-LD block")
            continue
        # Flatten arrays and @graph containers
        if isinstance(data, dict) and isinstance(data.get("@graph"), list):
            data = data["@graph"]
        if isinstance(data, list):
            results.extend(d for d in data if isinstance(d, dict))
        elif isinstance(data, dict):
            results.append(data)
    return results


# ---------------------------------------------------------------------------
# Open Graph meta tags
# ---------------------------------------------------------------------------


def _extract_og_tags(soup: BeautifulSoup) -> dict[str, str]:
    """og:* and product:* meta values keyed without their prefix (property= or name=)."""
    tags: dict[str, str] = {}
    for meta in soup.find_all("meta"):
        prop = meta.get("property", "") or meta.get("name", "")
        if not isinstance(prop, str):
            continue
        content = meta.get("content", "")
        if not content:
            continue
        if prop.startswith("og:"):
            tags[prop[3:]] = content
        elif prop.startswith("product:"):
            # product:price:amount -> price:amount
            tags.setdefault(prop[8:], content)
    return tags


# ---------------------------------------------------------------------------
# Embedded window state
# ---------------------------------------------------------------------------

# window.__NAME__ = {...}  or  window["__name-with-dashes__"] = {...}
_WINDOW_GLOBAL_RE = re.compile(
    r"window(?:\.(__[A-Za-z][A-Za-z0-9_]*__)|\[\s*[\"'](__[A-Za-z0-9_\-]+)[\"']\s*\])\s*=\s*"
)


def _extract_window_globals(soup: BeautifulSoup) -> tuple[dict[str, Any], list[str]]:
    """Extract window global assignments of objects/arrays from inline scripts."""
    results: dict[str, Any] = {}
    malformed: list[str] = []

    for tag in soup.find_all("script"):
        # Skip external scripts and typed data blocks
        if tag.get("src") or tag.get("type") in ("application/json", "text/json", "application/ld+json"):
            continue
        text = tag.string
        if not text:
            continue

        for match in _WINDOW_GLOBAL_RE.finditer(text):
            var_name = match.group(1) or match.group(2)
            if text[match.end() : match.end() + 1] not in ("{", "["):
                continue

            literal = _brace_match(text, match.end())
            try:
                results[var_name] = json.loads(literal or "")
            except ValueError:
                logger.debug("State fragment %s is not valid JSON", var_name)
                malformed.append(var_name)

    return results, malformed


def _brace_match(text: str, start: int) -> str | None:
    """Slice the literal opening at ``text[start]`` up to its closing bracket.

    Brackets inside string literals (escaped quotes included) do not count.
    Returns None when the literal never closes.
    """
    depth = 0
    in_string = escaped = False

    for i in range(start, len(text)):
        c = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
        elif c == '"':
            in_string = True
        elif c in "{[":
            depth += 1
        elif c in "}]":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return None


# ---------------------------------------------------------------------------
# Breadcrumbs
# ---------------------------------------------------------------------------


def _clean_crumbs(names: list[str]) -> list[str]:
    crumbs = []
    for name in names:
        name = " ".join(name.split())
        if not name or ">" in name or name.lower() in ROOT_CRUMBS:
            continue
        crumbs.append(name)
    return list(dict.fromkeys(crumbs))


def _extract_breadcrumbs(json_ld: list[dict], soup: BeautifulSoup) -> list[str]:
    """Extract the breadcrumb trail, root crumb removed.

    Order of sources: breadcrumb markup, JSON-LD BreadcrumbList, microdata.
    """
    items = soup.select(".breadcrumb-wrapper .breadcrumb li") or soup.select(
        "nav[aria-label=breadcrumb] li"
    )
    crumbs = _clean_crumbs([li.get_text(" ", strip=True) for li in items])
    if crumbs:
        return crumbs

    for block in json_ld:
        if block.get("@type") == "BreadcrumbList":
            entries = block.get("itemListElement", [])
            if isinstance(entries, list):
                entries = [e for e in entries if isinstance(e, dict)]
                entries.sort(key=lambda x: x.get("position", 0))
                names = []
                for entry in entries:
                    name = entry.get("name")
                    if not name and isinstance(entry.get("item"), dict):
                        name = entry["item"].get("name")
                    if name:
                        names.append(str(name))
                crumbs = _clean_crumbs(names)
                if crumbs:
                    return crumbs

    bc_list = soup.find(itemtype=re.compile(r"schema\.org/BreadcrumbList"))
    if bc_list:
        positioned = []
        for item in bc_list.find_all(itemtype=re.compile(r"schema\.org/ListItem")):
            pos_tag = item.find("meta", attrs={"itemprop": "position"})
            try:
                pos = int(pos_tag["content"]) if pos_tag and pos_tag.get("content") else 999
            except ValueError:
                pos = 999
            name_tag = item.find(attrs={"itemprop": "name"})
            name = name_tag.get_text(strip=True) if name_tag else ""
            if name:
                positioned.append((pos, name))
        positioned.sort(key=lambda x: x[0])
        return _clean_crumbs([name for _, name in positioned])

    return []


# ---------------------------------------------------------------------------
# Gallery images
# ---------------------------------------------------------------------------


def _extract_gallery_images(soup: BeautifulSoup) -> list[str]:
    """Image candidates from the product gallery, highest srcset entry preferred."""
    urls: list[str] = []
    for selector in GALLERY_SELECTORS:
        for img in soup.select(selector):
            best = _best_from_srcset(img.get("srcset") or img.get("data-srcset"))
            if best:
                urls.append(best)
                continue
            for attr in ("data-src", "src"):
                url = img.get(attr)
                if url and isinstance(url, str):
                    urls.append(url.strip())
                    break
    return list(dict.fromkeys(urls))


def _best_from_srcset(srcset: str | None) -> str | None:
    """Largest candidate of a srcset ('800w' or '2x' descriptors); ties go to the later one."""
    if not srcset or not isinstance(srcset, str):
        return None

    best: tuple[float, str] | None = None
    for entry in srcset.split(","):
        parts = entry.split()
        if not parts:
            continue
        size = 1.0
        if len(parts) > 1:
            descriptor = parts[-1].lower()
            try:
                size = float(descriptor[:-1]) if descriptor[-1:] in ("w", "x") else 0.0
            except ValueError:
                size = 0.0
        if best is None or size >= best[0]:
            best = (size, parts[0])

    return best[1] if best else None
