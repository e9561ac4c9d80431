"""Tests for the CoverArtArchive client."""

import pytest
from pytest_httpx import HTTPXMock

from beatcollector.domain.entities import CoverArtSize
from beatcollector.domain.exceptions import EntityNotFoundException, ExternalServiceError
from beatcollector.infrastructure.integrations.coverartarchive_client import (
    CoverArtArchiveClient,
)


@pytest.fixture
async def cover_client():
    client = CoverArtArchiveClient("TestApp/1.0 ( test@example.com )")
    client.REQUEST_DELAY = 0
    yield client
    await client.close()


class TestFetchFrontCover:
    async def test_follows_redirect_to_image(
        self, cover_client: CoverArtArchiveClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url="https://coverartarchive.org/release-group/rg-1/front-1200",
            status_code=307,
            headers={"Location": "https://archive.org/download/mbid-x/front-1200.jpg"},
        )
        httpx_mock.add_response(
            url="https://archive.org/download/mbid-x/front-1200.jpg",
            content=b"jpeg-bytes",
        )

        content = await cover_client.fetch_front_cover("rg-1", CoverArtSize.LARGE)

        assert content == b"jpeg-bytes"
        assert httpx_mock.get_requests()[0].headers["User-Agent"] == (
            "TestApp/1.0 ( test@example.com )"
        )

    async def test_default_size_is_500(
        self, cover_client: CoverArtArchiveClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(
            url="https://coverartarchive.org/release-group/rg-1/front-500", content=b"x"
        )

        assert await cover_client.fetch_front_cover("rg-1") == b"x"

    async def test_404_is_not_found(
        self, cover_client: CoverArtArchiveClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(status_code=404)

        with pytest.raises(EntityNotFoundException):
            await cover_client.fetch_front_cover("rg-none")

    async def test_server_error(
        self, cover_client: CoverArtArchiveClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(status_code=500)

        with pytest.raises(ExternalServiceError) as exc_info:
            await cover_client.fetch_front_cover("rg-1")
        assert exc_info.value.retryable is True
