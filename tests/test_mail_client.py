from unittest.mock import Mock, patch

import pytest
import requests

from mail_client import MailLookupClient, MailLookupError


def _response(body, status_error=None):
    response = Mock()
    response.json.return_value = body
    response.raise_for_status.side_effect = status_error
    return response


def test_lookup_posts_email_and_platform():
    client = MailLookupClient("https://mail.example.com/lookup/", api_key="k", timeout=5)
    with patch("mail_client.requests.post", return_value=_response({"status": "success", "code": "42"})) as post:
        assert client.lookup("a@example.com", "netflix") == {"status": "success", "code": "42"}

    post.assert_called_once_with(
        "https://mail.example.com/lookup",
        json={"email": "a@example.com", "platform": "netflix"},
        headers={"Content-Type": "application/json", "X-API-KEY": "k"},
        timeout=5,
    )


def test_http_errors_become_lookup_errors():
    client = MailLookupClient("https://mail.example.com/lookup")
    failing = _response({}, status_error=requests.HTTPError("502 Bad Gateway"))
    with patch("mail_client.requests.post", return_value=failing):
        with pytest.raises(MailLookupError):
            client.lookup("a@example.com", "netflix")


def test_non_object_body_is_rejected():
    client = MailLookupClient("https://mail.example.com/lookup")
    with patch("mail_client.requests.post", return_value=_response(["nope"])):
        with pytest.raises(MailLookupError):
            client.lookup("a@example.com", "netflix")


def test_unconfigured_endpoint():
    with pytest.raises(MailLookupError):
        MailLookupClient("").lookup("a@example.com", "netflix")
