import httpx
import pytest

from airbitrage.clients.tavily import TavilyRateLimitError
from pipelines.scout.extraction import extract_price
from pipelines.scout.leads import SourceStatus
from pipelines.scout.sources.books import book_lead_from_doc, fetch_open_library_books
from pipelines.scout.sources.craigslist import (
    CraigslistQuery,
    build_feeds,
    fetch_craigslist,
    parse_craigslist_feed,
)
from pipelines.scout.sources.crypto import TradingPair, fetch_crypto_quotes
from pipelines.scout.sources.rss import DealFeed, fetch_deal_feeds, parse_deal_feed
from pipelines.scout.sources.search import (
    ebay_search_terms,
    fetch_gov_auctions,
    search_ebay_listings,
    tavily_batch_search,
)
from tests.helpers.stubs import StubSearchClient, no_sleep

RSS_FEED = """<?xml version="1.0"?>
<rss version="2.0"><channel>
<item>
  <title><![CDATA[Dyson V8 $149.99 (was $399.99)]]></title>
  <link>https://slickdeals.net/f/123</link>
  <description>&lt;p&gt;Great &amp;amp; cheap&lt;/p&gt;</description>
  <pubDate>Mon, 06 Oct 2025 10:00:00 GMT</pubDate>
</item>
<item>
  <title>Missing link item</title>
</item>
</channel></rss>"""

ATOM_FEED = """<feed xmlns="http://www.w3.org/2005/Atom">
<entry>
  <title>[Amazon] Kindle $60 (was $140)</title>
  <link href="https://www.reddit.com/r/deals/comments/abc/kindle/"/>
  <content type="html"><![CDATA[<div>Lowest price ever</div>]]></content>
  <updated>2025-10-06T10:00:00+00:00</updated>
</entry>
</feed>"""

CRAIGSLIST_FEED = """<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#" xmlns="http://purl.org/rss/1.0/"
  xmlns:dc="http://purl.org/dc/elements/1.1/">
<item rdf:about="https://sfbay.craigslist.org/sfc/ele/d/macbook/7712345678.html">
  <title><![CDATA[MacBook Pro 14 M1 - $900]]></title>
  <link>https://sfbay.craigslist.org/sfc/ele/d/macbook/7712345678.html</link>
  <description><![CDATA[Great condition]]></description>
</item>
<item rdf:about="https://sfbay.craigslist.org/sfc/ele/d/ipad/7712345679.html">
  <title>iPad Air</title>
  <link>https://sfbay.craigslist.org/sfc/ele/d/ipad/7712345679.html</link>
  <description>Works fine</description>
  <dc:format>$250</dc:format>
</item>
</rdf:RDF>"""


def _mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_parse_deal_feed_handles_rss_and_atom():
    rss_items = parse_deal_feed(RSS_FEED, "Slickdeals")
    assert len(rss_items) == 1
    assert rss_items[0].title == "Dyson V8 $149.99 (was $399.99)"
    assert rss_items[0].url == "https://slickdeals.net/f/123"
    assert rss_items[0].pub_date == "Mon, 06 Oct 2025 10:00:00 GMT"

    (atom_item,) = parse_deal_feed(ATOM_FEED, "r/deals")
    assert atom_item.url == "https://www.reddit.com/r/deals/comments/abc/kindle/"
    assert atom_item.description == "Lowest price ever"
    assert atom_item.source == "r/deals"


DEALNEWS_FEED = """<?xml version="1.0"?>
<rss version="2.0"><channel>
<item>
  <title>Sony WH-1000XM5 &#036;228 (was &#036;399) &#8211; Best Buy</title>
  <link>https://www.dealnews.com/Sony-WH-1000-XM-5/123.html</link>
  <description>Apple&#8217;s rival &amp;amp; more&lt;br/&gt;Free shipping</description>
</item>
</channel></rss>"""

REDDIT_ATOM_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
<entry>
  <title>[Target] Ninja Creami &#036;129.99 &amp; free pickup</title>
  <link rel="alternate" href="https://www.reddit.com/r/deals/comments/xyz/ninja_creami/"/>
  <summary type="html">&lt;p&gt;Down from &#036;229&lt;/p&gt;</summary>
  <published>2025-10-07T08:00:00+00:00</published>
</entry>
</feed>"""


def test_parse_deal_feed_decodes_numeric_entities():
    (item,) = parse_deal_feed(DEALNEWS_FEED, "DealNews")

    assert item.title == "Sony WH-1000XM5 $228 (was $399) – Best Buy"
    assert "&#" not in item.description
    assert item.description.startswith("Apple’s rival & more")
    assert extract_price(item.title) == 22_800


def test_parse_deal_feed_reads_atom_link_href_and_summary():
    (item,) = parse_deal_feed(REDDIT_ATOM_FEED, "r/deals")

    assert item.title == "[Target] Ninja Creami $129.99 & free pickup"
    assert item.url == "https://www.reddit.com/r/deals/comments/xyz/ninja_creami/"
    assert item.description == "Down from $229"
    assert item.pub_date == "2025-10-07T08:00:00+00:00"


def test_parse_deal_feed_caps_items_and_description_length():
    body = "x" * 900
    entries = "".join(
        f"<item><title>Deal {index} $10</title><link>https://deals.example/{index}</link>"
        f"<description>{body}</description></item>"
        for index in range(20)
    )
    items = parse_deal_feed(f'<rss version="2.0"><channel>{entries}</channel></rss>', "Slickdeals")

    assert len(items) == 15
    assert len(items[0].description) == 500


@pytest.mark.asyncio
async def test_fetch_deal_feeds_isolates_failures():
    feeds = (
        DealFeed("https://slickdeals.example/rss", "Slickdeals"),
        DealFeed("https://blocked.example/rss", "r/deals"),
    )

    def handler(request: httpx.Request) -> httpx.Response:
        if "slickdeals" in request.url.host:
            return httpx.Response(200, text=RSS_FEED)
        return httpx.Response(403)

    async with _mock_client(handler) as http:
        result = await fetch_deal_feeds(http, feeds=feeds)

    assert [item.source for item in result.leads] == ["Slickdeals"]
    statuses = {diagnostic.source: diagnostic.status for diagnostic in result.diagnostics}
    assert statuses == {"Slickdeals": SourceStatus.SUCCESS, "r/deals": SourceStatus.BLOCKED}


def test_parse_craigslist_feed_reads_prices_from_title_and_dc_format():
    leads = parse_craigslist_feed(CRAIGSLIST_FEED, city="sfbay", query="macbook")

    assert [lead.price_found for lead in leads] == [90_000, 25_000]
    assert leads[0].source == "craigslist-sfbay"
    assert leads[0].category == "macbook"


def test_parse_craigslist_feed_prices_titles_with_numeric_entities():
    feed = """<?xml version="1.0" encoding="UTF-8"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#" xmlns="http://purl.org/rss/1.0/">
<item rdf:about="https://seattle.craigslist.org/see/ele/d/sonos/7700000001.html">
  <title>Sonos One &#8211; like new &#x0024;120</title>
  <link>https://seattle.craigslist.org/see/ele/d/sonos/7700000001.html</link>
  <description>Pickup only &amp;amp; cash</description>
</item>
</rdf:RDF>"""

    (lead,) = parse_craigslist_feed(feed, city="seattle", query="sonos")

    assert lead.title == "Sonos One – like new $120"
    assert lead.price_found == 12_000
    assert lead.snippet == "Pickup only & cash"


def test_build_feeds_defaults_and_cap():
    feeds = build_feeds(CraigslistQuery())
    assert len(feeds) == 40
    assert feeds[0].url == "https://sfbay.craigslist.org/search/sss?query=macbook&format=rss&sort=date"

    custom = build_feeds(CraigslistQuery(cities=("austin",), categories=("electronics",), queries=("sony",)))
    assert [feed.url for feed in custom] == [
        "https://austin.craigslist.org/search/ela?query=sony&format=rss&sort=date"
    ]


@pytest.mark.asyncio
async def test_fetch_craigslist_dedupes_and_summarises():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host.startswith("sfbay"):
            return httpx.Response(200, text=CRAIGSLIST_FEED)
        return httpx.Response(403)

    query = CraigslistQuery(cities=("sfbay", "austin"), categories=("electronics",), queries=("macbook", "ipad"))
    async with _mock_client(handler) as http:
        result = await fetch_craigslist(http, query, sleep=no_sleep)

    assert len(result.leads) == 2
    summary = result.diagnostics[-1]
    assert summary.source == "Craigslist RSS (summary)"
    assert summary.status is SourceStatus.SUCCESS
    assert summary.error == "2/4 feeds failed"


@pytest.mark.asyncio
async def test_fetch_crypto_quotes_survives_one_exchange_failing():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.binance.com":
            return httpx.Response(200, json=[{"symbol": "BTCUSDT", "price": "50000.00"}])
        if request.url.host == "api.coinbase.com":
            assert request.url.path == "/v2/prices/BTC-USD/spot"
            return httpx.Response(200, json={"data": {"amount": "50500.00"}})
        return httpx.Response(503)

    async with _mock_client(handler) as http:
        result = await fetch_crypto_quotes(http, ["BTC/USD"])

    assert {(quote.exchange, quote.price) for quote in result.leads} == {
        ("Binance", 50_000.0),
        ("Coinbase", 50_500.0),
    }
    statuses = {diagnostic.source: diagnostic.status for diagnostic in result.diagnostics}
    assert statuses["Kraken"] is SourceStatus.ERROR


@pytest.mark.asyncio
async def test_fetch_crypto_quotes_maps_kraken_symbols():
    seen_pairs: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.kraken.com":
            seen_pairs.append(request.url.params["pair"])
            return httpx.Response(200, json={"error": [], "result": {"XXBTZUSD": {"c": ["49900.0", "1"]}}})
        return httpx.Response(404)

    async with _mock_client(handler) as http:
        result = await fetch_crypto_quotes(http, ["btc"])

    assert seen_pairs == ["XBTUSD"]
    assert [quote.pair for quote in result.leads] == ["BTC/USD"]


def test_trading_pair_parse_defaults_to_usd():
    assert TradingPair.parse("eth").label == "ETH/USD"
    assert TradingPair.parse("sol/usdt").label == "SOL/USDT"


def test_book_lead_from_doc():
    lead = book_lead_from_doc(
        {
            "key": "/works/OL1W",
            "title": "Introduction to Algorithms",
            "author_name": ["Thomas Cormen"],
            "first_publish_year": 1990,
            "isbn": ["9780262033848"],
            "number_of_pages_median": 1312,
        },
        "algorithms data structures",
    )
    assert lead.title == "Introduction to Algorithms by Thomas Cormen"
    assert lead.url == "https://www.amazon.com/dp/9780262033848"
    assert lead.isbn == "9780262033848"
    assert lead.price_found is None
    assert book_lead_from_doc({"title": ""}, "x") is None


@pytest.mark.asyncio
async def test_fetch_open_library_books_limits_docs_per_term():
    docs = [{"key": f"/works/OL{index}W", "title": f"Book {index}"} for index in range(10)]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"docs": docs})

    async with _mock_client(handler) as http:
        result = await fetch_open_library_books(http, terms=("calculus textbook", "vintage cookbook"), sleep=no_sleep)

    assert len(result.leads) == 10
    assert result.diagnostics[-1].status is SourceStatus.SUCCESS


@pytest.mark.asyncio
async def test_tavily_batch_search_drops_search_pages_and_counts_failures():
    client = StubSearchClient(
        {
            "dyson v8 deal": [
                {"url": "https://www.ebay.com/itm/1", "title": "Dyson V8 $120", "content": "Used"},
                {"url": "https://www.google.com/search?q=dyson", "title": "Dyson", "content": ""},
            ]
        },
        errors={"broken query": TavilyRateLimitError()},
    )

    result = await tavily_batch_search(client, ["dyson v8 deal", "broken query"], sleep=no_sleep)

    assert [lead.url for lead in result.leads] == ["https://www.ebay.com/itm/1"]
    assert result.leads[0].price_found == 12_000
    assert result.leads[0].source == "ebay.com"
    assert result.diagnostics[-1].error == "1/2 queries failed"


@pytest.mark.asyncio
async def test_search_sources_report_missing_key():
    result = await tavily_batch_search(None, ["anything"])
    assert result.leads == []
    assert result.diagnostics[0].status is SourceStatus.ERROR
    assert result.diagnostics[0].error == "No Tavily API key provided"

    gov = await fetch_gov_auctions(None)
    assert gov.diagnostics[0].source == "Gov Auctions"


def test_ebay_search_terms_strip_site_scopes():
    queries = ["site:ebay.com/itm lego auction", "site:mercari.com/item vintage lego", "pokemon cards"]
    assert ebay_search_terms(queries) == ["vintage lego", "pokemon cards"]


@pytest.mark.asyncio
async def test_search_ebay_listings_relabels_source():
    client = StubSearchClient(
        lambda query: [{"url": "https://www.ebay.com/itm/77", "title": "Lego 10294 $400", "content": ""}]
    )

    result = await search_ebay_listings(client, ["lego titanic"], sleep=no_sleep)

    assert len(client.queries) == 2
    assert client.queries[0] == "site:ebay.com lego titanic auction ending soon"
    assert {lead.source for lead in result.leads} == {"eBay"}


@pytest.mark.asyncio
async def test_fetch_gov_auctions_labels_sites():
    client = StubSearchClient(
        lambda query: [
            {
                "url": "https://www.govdeals.com/index.cfm?fa=Main.Item&itemid=1",
                "title": "Pallet of laptops current bid $300",
                "content": "",
            }
        ]
        if "govdeals" in query
        else []
    )

    result = await fetch_gov_auctions(client, sleep=no_sleep)

    assert len(result.leads) == 3
    assert {lead.source for lead in result.leads} == {"GovDeals"}
    assert result.diagnostics[-1].status is SourceStatus.SUCCESS
