import httpx
import pytest

from product_insight.services.page_fetcher import (
    FetchError,
    PageFetcher,
    domain_of,
    is_domain_allowed,
)

PAGE = "<html><head><title>Stabilo Boss - UPCitemdb</title></head><body>4006381333931</body></html>"


def make_fetcher(settings, handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    return PageFetcher(settings=settings, client=client)


def html_response(body=PAGE, status=200, content_type="text/html; charset=utf-8"):
    return httpx.Response(status, text=body, headers={"content-type": content_type})


def test_domain_of_strips_www_and_lowercases():
    assert domain_of("https://www.UPCitemdb.com/upc/4006381333931") == "upcitemdb.com"
    assert domain_of("not a url") == ""


def test_is_domain_allowed_exact_or_subdomain():
    allowed = ["openfoodfacts.org", "eandata.com"]
    assert is_domain_allowed("openfoodfacts.org", allowed)
    assert is_domain_allowed("fr.openfoodfacts.org", allowed)
    assert not is_domain_allowed("evilopenfoodfacts.org", allowed)
    assert not is_domain_allowed("example.com", allowed)


@pytest.mark.asyncio
async def test_fetch_allowed_page(settings):
    seen = {}

    def handler(request):
        seen["user_agent"] = request.headers.get("user-agent", "")
        return html_response()

    async with make_fetcher(settings, handler) as fetcher:
        page = await fetcher.fetch_page("https://www.upcitemdb.com/upc/4006381333931")

    assert page.domain == "upcitemdb.com"
    assert page.status == 200
    assert "4006381333931" in page.html
    assert "Mozilla" in seen["user_agent"]


@pytest.mark.asyncio
async def test_fetch_follows_redirects(settings):
    def handler(request):
        if request.url.path == "/old":
            return httpx.Response(301, headers={"location": "https://www.eandata.com/new"})
        return html_response()

    async with make_fetcher(settings, handler) as fetcher:
        page = await fetcher.fetch_page("https://www.eandata.com/old")

    assert page.final_url == "https://www.eandata.com/new"


@pytest.mark.asyncio
async def test_disallowed_domain_is_never_requested(settings):
    def handler(request):
        raise AssertionError("request should not be sent")

    async with make_fetcher(settings, handler) as fetcher:
        with pytest.raises(FetchError, match="not allowed"):
            await fetcher.fetch_page("https://www.amazon.com/dp/B000")


@pytest.mark.asyncio
async def test_unsupported_scheme(settings):
    async with make_fetcher(settings, lambda request: html_response()) as fetcher:
        with pytest.raises(FetchError, match="scheme"):
            await fetcher.fetch_page("ftp://eandata.com/file")


@pytest.mark.asyncio
async def test_non_success_status(settings):
    async with make_fetcher(settings, lambda request: html_response(status=404)) as fetcher:
        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch_page("https://eandata.com/missing")

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_non_html_content_rejected(settings):
    handler = lambda request: html_response(body="{}", content_type="application/json")
    async with make_fetcher(settings, handler) as fetcher:
        with pytest.raises(FetchError, match="content type"):
            await fetcher.fetch_page("https://eandata.com/api")


@pytest.mark.asyncio
async def test_oversized_page_rejected(settings_factory):
    settings = settings_factory(MAX_HTML_BYTES=100)
    handler = lambda request: html_response(body="x" * 500)
    async with make_fetcher(settings, handler) as fetcher:
        with pytest.raises(FetchError, match="too large"):
            await fetcher.fetch_page("https://eandata.com/big")


@pytest.mark.asyncio
async def test_transport_error_becomes_fetch_error(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with make_fetcher(settings, handler) as fetcher:
        with pytest.raises(FetchError, match="Fetch failed"):
            await fetcher.fetch_page("https://eandata.com/down")


@pytest.mark.asyncio
async def test_declared_length_over_limit_rejected_before_reading(settings_factory):
    settings = settings_factory(MAX_HTML_BYTES=100)
    handler = lambda request: httpx.Response(
        200,
        headers={"content-type": "text/html", "content-length": "5000000"},
        content=b"<html></html>",
    )
    async with make_fetcher(settings, handler) as fetcher:
        with pytest.raises(FetchError, match="declared"):
            await fetcher.fetch_page("https://eandata.com/huge")


@pytest.mark.asyncio
async def test_streamed_body_is_cut_off_at_limit(settings_factory):
    settings = settings_factory(MAX_HTML_BYTES=100)
    sent = []

    async def endless_body():
        for _ in range(1000):
            sent.append(1)
            yield b"x" * 64

    handler = lambda request: httpx.Response(
        200, headers={"content-type": "text/html"}, content=endless_body()
    )
    async with make_fetcher(settings, handler) as fetcher:
        with pytest.raises(FetchError, match="too large"):
            await fetcher.fetch_page("https://eandata.com/stream")

    assert len(sent) < 10


@pytest.mark.asyncio
async def test_body_decoded_with_declared_charset(settings):
    body = "<html><title>Crème brûlée</title></html>".encode("latin-1")
    handler = lambda request: httpx.Response(
        200, headers={"content-type": "text/html; charset=iso-8859-1"}, content=body
    )
    async with make_fetcher(settings, handler) as fetcher:
        page = await fetcher.fetch_page("https://eandata.com/latin")

    assert "Crème brûlée" in page.html
