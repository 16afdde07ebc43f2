import httpx
import pytest

from gathyr.errors import FeedFetchError
from gathyr.feeds.fetcher import FeedFetcher, parse_feed_document, strip_markup

RSS_DOCUMENT = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Tech News</title>
    <link>https://example.com/</link>
    <description>Daily technology headlines</description>
    <item>
      <title>First story</title>
      <link>https://example.com/1</link>
      <description>&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt;&lt;/p&gt;</description>
      <pubDate>Mon, 06 Jan 2025 10:00:00 GMT</pubDate>
      <guid>story-1</guid>
      <category>tech</category>
    </item>
    <item>
      <title>Second story</title>
      <link>https://example.com/2</link>
      <description>Plain text summary</description>
      <guid>story-2</guid>
    </item>
    <item>
      <link>https://example.com/3</link>
      <description>No title here</description>
    </item>
  </channel>
</rss>
"""


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestStripMarkup:
    def test_removes_tags_and_unescapes_entities(self):
        assert strip_markup("<p>A &amp; B</p>\n  <br/>C") == "A & B C"

    def test_passes_empty_values_through(self):
        assert strip_markup(None) is None
        assert strip_markup("") == ""


class TestParseFeedDocument:
    def test_extracts_feed_and_entry_fields(self):
        parsed = parse_feed_document(RSS_DOCUMENT, url="https://example.com/rss")

        assert parsed.title == "Tech News"
        assert parsed.description == "Daily technology headlines"
        assert parsed.link == "https://example.com/"
        assert len(parsed.items) == 3

        first = parsed.items[0]
        assert first["title"] == "First story"
        assert first["link"] == "https://example.com/1"
        assert first["contentSnippet"] == "Hello world"
        assert first["pubDate"] == "Mon, 06 Jan 2025 10:00:00 GMT"
        assert first["isoDate"] == "2025-01-06T10:00:00.000Z"
        assert first["guid"] == "story-1"
        assert first["categories"] == ["tech"]

    def test_keeps_source_order(self):
        parsed = parse_feed_document(RSS_DOCUMENT)
        assert [item["link"] for item in parsed.items] == [
            "https://example.com/1",
            "https://example.com/2",
            "https://example.com/3",
        ]

    def test_rejects_documents_that_are_not_feeds(self):
        with pytest.raises(FeedFetchError) as excinfo:
            parse_feed_document(b"definitely not a feed", url="https://example.com/page")
        assert "Unable to parse feed" in str(excinfo.value)
        assert excinfo.value.url == "https://example.com/page"


class TestFeedFetcher:
    @pytest.mark.asyncio
    async def test_fetch_parses_response_body(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(
                200,
                content=RSS_DOCUMENT,
                headers={"content-type": "application/rss+xml"},
            )

        client = _client(handler)
        fetcher = FeedFetcher(http_client=client)
        try:
            parsed = await fetcher.fetch("https://example.com/rss")
        finally:
            await client.aclose()

        assert seen == ["https://example.com/rss"]
        assert parsed.title == "Tech News"
        assert [item["title"] for item in parsed.items][:2] == ["First story", "Second story"]

    @pytest.mark.asyncio
    async def test_http_error_status_raises_fetch_error(self):
        client = _client(lambda request: httpx.Response(404, content=b"missing"))
        fetcher = FeedFetcher(http_client=client)
        try:
            with pytest.raises(FeedFetchError) as excinfo:
                await fetcher.fetch("https://example.com/gone")
        finally:
            await client.aclose()

        assert str(excinfo.value) == "HTTP 404 [https://example.com/gone]"
        assert isinstance(excinfo.value.__cause__, httpx.HTTPStatusError)

    @pytest.mark.asyncio
    async def test_transport_error_raises_fetch_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)
        fetcher = FeedFetcher(http_client=client)
        try:
            with pytest.raises(FeedFetchError) as excinfo:
                await fetcher.fetch("https://unreachable.invalid/rss")
        finally:
            await client.aclose()

        assert "Unable to reach feed source" in str(excinfo.value)
        assert excinfo.value.url == "https://unreachable.invalid/rss"

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self):
        client = _client(lambda request: httpx.Response(200, content=RSS_DOCUMENT))
        fetcher = FeedFetcher(http_client=client)

        await fetcher.aclose()

        assert client.is_closed is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_aclose_closes_owned_client(self):
        fetcher = FeedFetcher(user_agent="GathyrTest/1.0")
        assert fetcher._client.headers["User-Agent"] == "GathyrTest/1.0"

        await fetcher.aclose()

        assert fetcher._client.is_closed is True
