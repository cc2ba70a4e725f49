"""Shared fixtures for the relay tests."""

from __future__ import annotations

from typing import Generator
from unittest.mock import MagicMock, patch

import pytest
from flask import Flask
from flask.testing import FlaskClient

from main import create_app

TEST_API_KEY = "secret-test-key"


@pytest.fixture
def app() -> Flask:
    """App with an injected credential so the environment never leaks in."""
    return create_app({"TESTING": True, "GEMINI_API_KEY": TEST_API_KEY})


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    return app.test_client()


@pytest.fixture
def mock_post() -> Generator[MagicMock, None, None]:
    """Patch the upstream HTTP call made by the relay."""
    with patch("main.requests.post") as post:
        yield post


def upstream_response(status_code: int = 200, json_body=None, reason: str = "OK", text: str = "") -> MagicMock:
    """Build a stand-in for ``requests.Response``."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.reason = reason
    resp.text = text
    resp.json.return_value = json_body
    return resp
