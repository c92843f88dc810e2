"""Short URL resource tests."""

import json
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest
from conftest import make_request

from mediavault.enums import HttpMethod, Propagation
from mediavault.exceptions import InvalidArgumentError, ResourceError
from mediavault.http import SHORT_URL_HEADER, Request
from mediavault.resources import GlobalShortUrl, ShortUrl, ShortUrls
from mediavault.schemas import ShortUrlParams

IMAGE_ROUTE = {"user": "christer", "imageIdentifier": "abc"}
PARAMS = ShortUrlParams(user="christer", image_identifier="abc", extension="png", query="t[]=border")


@pytest.fixture
def stored(database):
    database._records["aaaaaaa"] = PARAMS
    return database


# ============================================================================
# SINGLE SHORT URL
# ============================================================================


@pytest.mark.asyncio
async def test_get_returns_stored_params(make_event, stored) -> None:
    request = make_request(
        "http://imbo/users/christer/images/abc/shortUrls/aaaaaaa",
        route={**IMAGE_ROUTE, "shortUrlId": "aaaaaaa"},
    )
    event = make_event(request, name="shorturl.get")

    await ShortUrl().get_short_url(event)

    assert event.response.model == {
        "user": "christer",
        "imageIdentifier": "abc",
        "extension": "png",
        "query": {"t": ["border"]},
    }


@pytest.mark.asyncio
async def test_get_hides_short_urls_of_other_images(make_event, stored) -> None:
    request = make_request(
        "http://imbo/users/christer/images/other/shortUrls/aaaaaaa",
        route={"user": "christer", "imageIdentifier": "other", "shortUrlId": "aaaaaaa"},
    )
    with pytest.raises(ResourceError) as exc_info:
        await ShortUrl().get_short_url(make_event(request, name="shorturl.get"))
    assert exc_info.value.status_code == 404
    assert exc_info.value.message == "ShortURL not found"


@pytest.mark.asyncio
async def test_delete_removes_only_that_short_url(make_event, stored) -> None:
    stored._records["bbbbbbb"] = PARAMS.model_copy(update={"extension": "jpg"})
    request = make_request(
        "http://imbo/users/christer/images/abc/shortUrls/aaaaaaa",
        method="DELETE",
        route={**IMAGE_ROUTE, "shortUrlId": "aaaaaaa"},
    )
    event = make_event(request, name="shorturl.delete")

    await ShortUrl().delete_short_url(event)

    assert event.response.model == {"imageIdentifier": "abc"}
    assert await stored.get_short_url_params("aaaaaaa") is None
    assert await stored.get_short_url_params("bbbbbbb") is not None


@pytest.mark.asyncio
async def test_delete_unknown_short_url_is_404(make_event) -> None:
    request = make_request(
        "http://imbo/users/christer/images/abc/shortUrls/zzzzzzz",
        method="DELETE",
        route={**IMAGE_ROUTE, "shortUrlId": "zzzzzzz"},
    )
    with pytest.raises(ResourceError):
        await ShortUrl().delete_short_url(make_event(request, name="shorturl.delete"))


# ============================================================================
# SHORT URL COLLECTION
# ============================================================================


def post_request(body: dict) -> Request:
    return make_request(
        "http://imbo/users/christer/images/abc/shortUrls",
        method="POST",
        route=IMAGE_ROUTE,
        body=json.dumps(body).encode(),
    )


@pytest.mark.asyncio
async def test_create_returns_201_with_id(make_event, database) -> None:
    event = make_event(
        post_request({"user": "christer", "imageIdentifier": "abc", "extension": "png"}),
        name="shorturls.post",
    )

    await ShortUrls(id_length=9).create_short_url(event)

    assert event.response.status_code == 201
    short_url_id = event.response.model["id"]
    assert len(short_url_id) == 9
    stored = await database.get_short_url_params(short_url_id)
    assert stored.extension == "png"


@pytest.mark.asyncio
async def test_create_rejects_mismatched_image(make_event) -> None:
    event = make_event(post_request({"user": "christer", "imageIdentifier": "xyz"}), name="shorturls.post")
    with pytest.raises(InvalidArgumentError):
        await ShortUrls().create_short_url(event)


@pytest.mark.parametrize(
    "body",
    [
        {"imageIdentifier": "abc"},
        {"user": "christer"},
        {"user": "", "imageIdentifier": "abc"},
    ],
)
@pytest.mark.asyncio
async def test_create_rejects_invalid_params(make_event, body) -> None:
    event = make_event(post_request(body), name="shorturls.post")
    with pytest.raises(InvalidArgumentError) as exc_info:
        await ShortUrls().create_short_url(event)
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_create_rejects_malformed_json(make_event) -> None:
    request = make_request(
        "http://imbo/users/christer/images/abc/shortUrls", method="POST", route=IMAGE_ROUTE, body=b"{nope"
    )
    with pytest.raises(InvalidArgumentError):
        await ShortUrls().create_short_url(make_event(request, name="shorturls.post"))


@pytest.mark.asyncio
async def test_delete_all_is_idempotent(make_event) -> None:
    database = AsyncMock()
    database.delete_short_urls.return_value = 0
    request = make_request(
        "http://imbo/users/christer/images/abc/shortUrls", method="DELETE", route=IMAGE_ROUTE
    )
    event = make_event(request, name="shorturls.delete")
    event = replace(event, database=database)

    await ShortUrls().delete_short_urls(event)
    await ShortUrls().delete_short_urls(event)

    assert event.response.model == {"imageIdentifier": "abc"}
    assert database.delete_short_urls.await_count == 2
    database.delete_short_urls.assert_awaited_with("christer", "abc")


def test_collection_only_allows_post_and_delete() -> None:
    assert ShortUrls().allowed_methods() == (HttpMethod.POST, HttpMethod.DELETE)
    assert ShortUrls().operation_for(HttpMethod.GET) is None


# ============================================================================
# GLOBAL SHORT URL
# ============================================================================


@pytest.mark.asyncio
async def test_global_short_url_marks_response(make_event, stored) -> None:
    request = make_request("http://imbo/s/aaaaaaa", route={"shortUrlId": "aaaaaaa"})
    event = make_event(request, name="globalshorturl.get")

    outcome = await GlobalShortUrl().handle(event)

    assert outcome is Propagation.CONTINUE
    assert event.response.headers[SHORT_URL_HEADER] == "aaaaaaa"


@pytest.mark.asyncio
async def test_global_short_url_unknown_id(make_event) -> None:
    request = make_request("http://imbo/s/zzzzzzz", route={"shortUrlId": "zzzzzzz"})
    with pytest.raises(ResourceError):
        await GlobalShortUrl().handle(make_event(request, name="globalshorturl.get"))


def test_global_short_url_runs_before_access_token() -> None:
    events = GlobalShortUrl().get_subscribed_events()
    assert events == {"globalshorturl.get.pre": 200, "globalshorturl.head.pre": 200}
    assert GlobalShortUrl().allowed_methods() == (HttpMethod.GET, HttpMethod.HEAD)
