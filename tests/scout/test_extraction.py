import pytest

from pipelines.scout.extraction import (
    UrlQuality,
    clean_title_for_search,
    dollars_to_cents,
    ebay_sold_search_url,
    extract_all_prices,
    extract_domain,
    extract_price,
    format_cents,
    is_listing_url,
    score_url_quality,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Selling for $1,299.99 obo", 129_999),
        ("Only USD 45 shipped", 4_500),
        ("Price: 80", 8_000),
        ("No price here", None),
        ("$0 free stuff", None),
        ("$2,000,000 mansion", None),
    ],
)
def test_extract_price(text, expected):
    assert extract_price(text) == expected


def test_extract_price_prefers_dollar_sign_over_usd():
    assert extract_price("USD 10 or $25") == 2_500


def test_extract_all_prices_keeps_document_order():
    assert extract_all_prices("Now $30 was $60, plus $5 shipping") == [3_000, 6_000, 500]


def test_dollars_to_cents_rejects_garbage():
    assert dollars_to_cents("12.50") == 1_250
    assert dollars_to_cents(",") is None


@pytest.mark.parametrize(
    ("url", "quality"),
    [
        ("https://www.ebay.com/itm/1234567890", UrlQuality.LISTING),
        ("https://www.amazon.com/Sony-Headphones/dp/B09XS7JWHH", UrlQuality.LISTING),
        ("https://sfbay.craigslist.org/sfc/ele/d/item/7712345678.html", UrlQuality.LISTING),
        ("https://www.ebay.com/sch/i.html?_nkw=sony", UrlQuality.GENERIC),
        ("https://www.google.com/search?q=sony", UrlQuality.SKIP),
        ("https://www.bestbuy.com/search/?st=sony", UrlQuality.SKIP),
        ("https://www.reddit.com/r/deals/", UrlQuality.SKIP),
        ("https://someblog.example.com/best-headphones-2025", UrlQuality.GENERIC),
    ],
)
def test_score_url_quality(url, quality):
    assert score_url_quality(url) is quality


def test_denylist_wins_over_listing_patterns():
    assert not is_listing_url("https://www.ebay.com/itm/search/?q=sony")


def test_extract_domain_strips_www_and_port():
    assert extract_domain("https://www.Example.com:8443/path") == "example.com"
    assert extract_domain("") == "unknown"


def test_clean_title_for_search_removes_deal_noise():
    title = "[Amazon] Sony WH-1000XM5 $248 (38% off) via amazon.com Free Shipping"
    assert clean_title_for_search(title) == "Sony WH-1000XM5"


def test_clean_title_for_search_cuts_on_word_boundary():
    title = "Vintage " + "wooden " * 20 + "chair"
    cleaned = clean_title_for_search(title)
    assert len(cleaned) <= 80
    assert not cleaned.endswith(" ")
    assert cleaned.split()[-1] == "wooden"


def test_ebay_sold_search_url_has_sold_flags():
    url = ebay_sold_search_url("Nintendo Switch OLED $250")
    assert url.startswith("https://www.ebay.com/sch/i.html?_nkw=Nintendo+Switch+OLED")
    assert url.endswith("&LH_Sold=1&LH_Complete=1")


def test_format_cents():
    assert format_cents(123_456) == "$1,234.56"
