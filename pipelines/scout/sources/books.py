"""Open Library search: book identities (ISBN, author) for resale lookups."""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Any

import httpx

from pipelines.scout.leads import BookLead, SourceResult
from pipelines.scout.sources.base import (
    SleepFn,
    SourceFetchError,
    default_sleep,
    diagnostic_for_error,
    fetch_json,
    summary_diagnostic,
)

OPEN_LIBRARY_SEARCH_URL = "https://openlibrary.org/search.json"
OPEN_LIBRARY_FIELDS = "key,title,author_name,first_publish_year,isbn,cover_i,number_of_pages_median"
REQUEST_DELAY_SECONDS = 0.5

BOOK_SEARCH_TERMS: tuple[str, ...] = (
    "medical textbook",
    "organic chemistry textbook",
    "calculus textbook",
    "nursing textbook",
    "anatomy physiology textbook",
    "algorithms data structures",
    "machine learning textbook",
    "system design interview",
    "design patterns programming",
    "first edition signed",
    "art photography monograph",
    "architecture coffee table book",
    "vintage cookbook",
)


def book_lead_from_doc(doc: dict[str, Any], term: str) -> BookLead | None:
    title = doc.get("title") or ""
    if not title:
        return None
    isbns = doc.get("isbn") or []
    isbn = isbns[0] if isbns else None
    authors = doc.get("author_name") or []
    author = authors[0] if authors else "Unknown"
    year = doc.get("first_publish_year")
    url = f"https://www.amazon.com/dp/{isbn}" if isbn else f"https://openlibrary.org{doc.get('key') or ''}"
    snippet = (
        f"{title} by {author} ({year or 'unknown year'}) - ISBN: {isbn or 'N/A'} - "
        f"{doc.get('number_of_pages_median') or '?'} pages"
    )
    return BookLead(
        title=f"{title} by {author}",
        url=url,
        snippet=snippet,
        source="Open Library",
        price_found=None,
        category=term,
        isbn=isbn,
        author=author,
        publish_year=year if isinstance(year, int) else None,
    )


async def fetch_open_library_books(
    http: httpx.AsyncClient,
    *,
    terms: Sequence[str] = BOOK_SEARCH_TERMS,
    timeout: float = 8.0,
    sleep: SleepFn = default_sleep,
) -> SourceResult[BookLead]:
    """Open Library carries no prices; leads are priced later by the book resale lookup."""
    started = time.perf_counter()
    result: SourceResult[BookLead] = SourceResult()
    searched = list(terms[:8])
    failures = 0

    for term in searched:
        term_started = time.perf_counter()
        try:
            payload = await fetch_json(
                http,
                OPEN_LIBRARY_SEARCH_URL,
                timeout=timeout,
                headers={"Accept": "application/json"},
                params={"q": term, "limit": 10, "fields": OPEN_LIBRARY_FIELDS},
            )
        except SourceFetchError as exc:
            failures += 1
            result.diagnostics.append(diagnostic_for_error("Open Library", term_started, exc))
        else:
            docs = payload.get("docs") if isinstance(payload, dict) else None
            for doc in (docs or [])[:5]:
                lead = book_lead_from_doc(doc, term) if isinstance(doc, dict) else None
                if lead is not None:
                    result.leads.append(lead)
        await sleep(REQUEST_DELAY_SECONDS)

    result.diagnostics.append(
        summary_diagnostic(
            "Open Library (summary)",
            started,
            item_count=len(result.leads),
            failures=failures,
            successes=len(searched) - failures,
            total=len(searched),
            unit="searches",
        )
    )
    return result
