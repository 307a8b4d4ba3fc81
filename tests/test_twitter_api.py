from unittest.mock import patch

import httpx
import pytest

from conversai.services import twitter_api
from conversai.services.platform_errors import PlatformAuthError, PlatformError


def _resp(status=200, json=None):
    return httpx.Response(status, json=json or {}, request=httpx.Request("POST", twitter_api.MEDIA_ENDPOINT_URL))


def test_code_challenge_is_s256_of_verifier():
    # printf %s "$verifier" | openssl dgst -sha256 -binary | base64, then url-safe without padding
    verifier = "dBjftJeZ4CVP-mJ92K9DgL3KN6nAO2rfnxC4xBwxNE8"
    challenge = twitter_api.code_challenge(verifier)
    assert challenge == "y7fInAEGny17b4O7e4L8NZDCAKqB1oFsqTPB_WeJZFY"
    assert "=" not in challenge


def test_chunked_video_upload_sequence(monkeypatch):
    monkeypatch.setattr(twitter_api, "CHUNK_SIZE", 4)
    calls = []

    def fake_media_call(method, access_token, **kwargs):
        params = kwargs.get("params") or {}
        data = kwargs.get("data") or {}
        command = params.get("command") or data.get("command")
        calls.append((command, data.get("segment_index")))
        if command == "INIT":
            return _resp(json={"data": {"id": "m-1"}})
        if command == "FINALIZE":
            return _resp(json={"data": {"processing_info": {"state": "pending", "check_after_secs": 1}}})
        if command == "STATUS":
            return _resp(json={"data": {"processing_info": {"state": "succeeded"}}})
        return _resp(status=204)

    monkeypatch.setattr(twitter_api, "_media_call", fake_media_call)
    with patch("conversai.services.twitter_api.time.sleep") as mock_sleep:
        media_id = twitter_api.upload_media("token", b"0123456789", "video/mp4", is_video=True)

    assert media_id == "m-1"
    assert calls == [
        ("INIT", None),
        ("APPEND", "0"), ("APPEND", "1"), ("APPEND", "2"),
        ("FINALIZE", None),
        ("STATUS", None),
    ]
    mock_sleep.assert_called_once_with(1)


def test_processing_failure_raises(monkeypatch):
    with pytest.raises(PlatformError, match="processing failed: unsupported codec"):
        twitter_api.wait_for_processing("token", "m-1", {"state": "failed", "error": {"message": "unsupported codec"}})


def test_post_tweet_prefers_video(monkeypatch):
    uploads = []
    monkeypatch.setattr(twitter_api, "upload_from_url",
                        lambda token, url, is_video: uploads.append((url, is_video)) or f"m-{len(uploads)}")
    monkeypatch.setattr(twitter_api, "create_tweet", lambda token, text, media_ids: f"tweet:{','.join(media_ids)}")

    tweet_id = twitter_api.post_tweet("token", "hi", image_urls=["a.png"], video_url="v.mp4")

    assert tweet_id == "tweet:m-1"
    assert uploads == [("v.mp4", True)]


def test_post_tweet_caps_images(monkeypatch):
    uploads = []
    monkeypatch.setattr(twitter_api, "upload_from_url",
                        lambda token, url, is_video: uploads.append(url) or url)
    monkeypatch.setattr(twitter_api, "create_tweet", lambda token, text, media_ids: "t")

    twitter_api.post_tweet("token", "hi", image_urls=[f"{i}.png" for i in range(6)])

    assert uploads == ["0.png", "1.png", "2.png", "3.png"]


def test_create_tweet_unauthorized_is_auth_error():
    resp = httpx.Response(401, text="Unauthorized", request=httpx.Request("POST", twitter_api.TWEETS_URL))
    with patch("conversai.services.twitter_api.request_with_retry", return_value=resp):
        with pytest.raises(PlatformAuthError):
            twitter_api.create_tweet("token", "hi")


def test_data_url_media_is_decoded():
    from conversai.services.http_client import download_media

    content, mime = download_media("data:image/png;base64,aGVsbG8=")
    assert content == b"hello"
    assert mime == "image/png"


def test_create_tweet_is_sent_as_non_idempotent():
    resp = httpx.Response(201, json={"data": {"id": "42"}}, request=httpx.Request("POST", twitter_api.TWEETS_URL))
    with patch("conversai.services.twitter_api.request_with_retry", return_value=resp) as send:
        assert twitter_api.create_tweet("token", "hi") == "42"
    assert send.call_args.kwargs["idempotent"] is False
