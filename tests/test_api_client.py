# Copyright (c) 2025 Luc Vincent. All Rights Reserved.
"""
Tests for the Gyazo API client (HTTP mocked).
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from gyazocli.api_client import (
    GyazoApiError,
    GyazoClient,
    UploadRequest,
    validate_upload_timestamp,
)
from gyazocli.config import ApiConfig


def make_response(status_code=200, payload=None, headers=None, bad_json=False):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    if bad_json:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return GyazoClient(ApiConfig(access_token="tok", max_retries=2), session=session)


class TestRequests:
    """Test request shaping and error mapping."""

    def test_list_images_sends_auth_and_paging(self, client, session):
        session.get.return_value = make_response(payload=[{"image_id": "a"}, "junk"])

        images = client.list_images(page=2, per_page=100)

        assert images == [{"image_id": "a"}, "junk"]
        args, kwargs = session.get.call_args
        assert args[0] == "https://api.gyazo.com/api/images"
        assert kwargs["params"] == {"page": 2, "per_page": 100}
        assert kwargs["headers"]["Authorization"] == "Bearer tok"

    def test_search_uses_per_param(self, client, session):
        session.get.return_value = make_response(payload=[])

        client.search_images("cat", page=1, per_page=5)

        assert session.get.call_args[1]["params"] == {"query": "cat", "page": 1, "per": 5}

    def test_not_found(self, client, session):
        session.get.return_value = make_response(status_code=404)

        with pytest.raises(GyazoApiError) as exc_info:
            client.get_image_detail("missing")

        assert exc_info.value.not_found

    def test_invalid_json(self, client, session):
        session.get.return_value = make_response(bad_json=True)
        with pytest.raises(GyazoApiError):
            client.get_current_user()

    def test_connection_error(self, client, session):
        session.get.side_effect = requests.ConnectionError("down")
        with pytest.raises(GyazoApiError, match="down"):
            client.list_images()

    def test_unexpected_list_payload(self, client, session):
        session.get.return_value = make_response(payload={"message": "?"})
        with pytest.raises(GyazoApiError):
            client.list_images()


class TestRateLimit:
    """Test HTTP 429 retry."""

    @patch("gyazocli.api_client.time.sleep")
    def test_retries_after_header(self, mock_sleep, client, session):
        session.get.side_effect = [
            make_response(status_code=429, headers={"Retry-After": "3"}),
            make_response(payload={"image_id": "a"}),
        ]

        assert client.get_image_detail("a") == {"image_id": "a"}
        mock_sleep.assert_called_once_with(3)

    @patch("gyazocli.api_client.time.sleep")
    def test_default_delay_without_header(self, mock_sleep, client, session):
        session.get.side_effect = [
            make_response(status_code=429),
            make_response(payload=[]),
        ]

        client.list_images()

        mock_sleep.assert_called_once_with(5)

    @patch("gyazocli.api_client.time.sleep")
    def test_gives_up_after_max_retries(self, mock_sleep, client, session):
        session.get.return_value = make_response(status_code=429, headers={"Retry-After": "0"})

        with pytest.raises(GyazoApiError) as exc_info:
            client.list_images()

        assert exc_info.value.status_code == 429
        assert session.get.call_count == 3


class TestUpload:
    """Test uploads and timestamp validation."""

    def test_upload_posts_form(self, client, session):
        session.post.return_value = make_response(payload={"image_id": "new"})

        result = client.upload_image(UploadRequest(image_data=b"img", title="T", timestamp=100))

        assert result == {"image_id": "new"}
        kwargs = session.post.call_args[1]
        assert kwargs["data"]["access_token"] == "tok"
        assert kwargs["data"]["title"] == "T"
        assert kwargs["data"]["created_at"] == "100"
        assert "app" not in kwargs["data"]
        assert kwargs["files"]["imagedata"] == ("upload.bin", b"img")

    def test_timestamp_must_be_integer(self):
        with pytest.raises(ValueError, match="unix timestamp in seconds"):
            validate_upload_timestamp("abc")
        with pytest.raises(ValueError, match="unix timestamp in seconds"):
            validate_upload_timestamp("1.5")

    def test_timestamp_not_in_future(self):
        with pytest.raises(ValueError, match="current time or in the past"):
            validate_upload_timestamp("2000", now=1000)
        assert validate_upload_timestamp("1000", now=1000) == 1000
