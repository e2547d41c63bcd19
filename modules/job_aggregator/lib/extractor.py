from __future__ import annotations

from bs4 import BeautifulSoup
from bs4.element import Tag

from .models import RawJob, SiteSelectors
from .utils import absolutize


def parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def extract(document: BeautifulSoup | Tag, selectors: SiteSelectors, base_url: str) -> list[RawJob]:
    """
    Return one RawJob per element matching `selectors.container`, in document order.

    Sub-selectors are evaluated inside each container; a missing match reads as "".
    Text fields concatenate every match (they feed job identity, so existing ids
    stay stable); the link is the href of the first match only.
    Containers without a title are dropped. Relative links resolve against the
    origin of `base_url` so every search page of a site yields the same URLs.
    """
    out: list[RawJob] = []
    for container in document.select(selectors.container):
        title = _text(container, selectors.title)
        if not title:
            continue
        out.append(
            RawJob(
                title=title,
                company=_text(container, selectors.company),
                location=_text(container, selectors.location),
                link=absolutize(_href(container, selectors.link), base_url),
            )
        )
    return out


def extract_html(html: str, selectors: SiteSelectors, base_url: str) -> list[RawJob]:
    return extract(parse(html), selectors, base_url)


# ---- internals ----


def _text(container: Tag, selector: str) -> str:
    # all matches, text nodes joined as-is; only the ends are trimmed
    return "".join(el.get_text() for el in container.select(selector)).strip()


def _href(container: Tag, selector: str) -> str:
    el = container.select_one(selector)
    if el is None:
        return ""
    href = el.get("href")
    if isinstance(href, list):
        href = " ".join(href)
    return (href or "").strip()
