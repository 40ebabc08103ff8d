"""
Tests for the file-storage bridge and Gemini clients, using
httpx.MockTransport in place of the network.
"""
import asyncio
import json
import pytest
import httpx

FILE_ID = "1AbCdEfGhIjKlMnOpQrStUvWxYz012345"


# =============================================================================
# TEST: DRIVE URL HELPERS
# =============================================================================

class TestDriveUrls:

    @pytest.mark.parametrize("url", [
        f"https://drive.google.com/file/d/{FILE_ID}/view?usp=sharing",
        f"https://drive.google.com/uc?id={FILE_ID}&export=view",
        f"https://drive.google.com/open?id={FILE_ID}",
        f"https://lh3.googleusercontent.com/d/{FILE_ID}",
        FILE_ID,
    ])
    def test_extract_file_id(self, url):
        from cme_tracker.services.integrations import extract_file_id_from_url

        assert extract_file_id_from_url(url) == FILE_ID

    @pytest.mark.parametrize("url", [None, "", "https://example.com/a.png", "short-id"])
    def test_no_file_id(self, url):
        from cme_tracker.services.integrations import extract_file_id_from_url

        assert extract_file_id_from_url(url) is None

    def test_transform(self):
        from cme_tracker.services.integrations import transform_drive_url

        assert transform_drive_url(FILE_ID) == f"https://lh3.googleusercontent.com/d/{FILE_ID}"
        assert transform_drive_url("https://example.com/a.png") == "https://example.com/a.png"


# =============================================================================
# TEST: DRIVE BRIDGE CLIENT
# =============================================================================

class TestDriveBridgeClient:

    def _client(self, handler):
        from cme_tracker.services.integrations import DriveBridgeClient
        return DriveBridgeClient(url="https://script.example/exec", token="t0ken",
                                 transport=httpx.MockTransport(handler))

    def test_upload_envelope(self):
        seen = {}

        def handler(request):
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "id": FILE_ID,
                                             "url": f"https://drive.google.com/file/d/{FILE_ID}/view"})

        uploaded = asyncio.run(self._client(handler).upload(b"\x89PNG", "image/png", "lan"))

        assert uploaded.id == FILE_ID
        assert uploaded.display_url.endswith(FILE_ID)
        assert seen["content_type"].startswith("text/plain")
        assert seen["body"]["token"] == "t0ken"
        assert seen["body"]["action"] == "upload"
        assert seen["body"]["username"] == "lan"
        assert seen["body"]["mimeType"] == "image/png"

    def test_bridge_error_reply(self):
        from cme_tracker.services.integrations import DriveBridgeError

        def handler(request):
            return httpx.Response(200, json={"success": False, "error": "Unauthorized"})

        with pytest.raises(DriveBridgeError, match="Unauthorized"):
            asyncio.run(self._client(handler).delete(FILE_ID))

    def test_http_error(self):
        from cme_tracker.services.integrations import DriveBridgeError

        def handler(request):
            return httpx.Response(500, text="oops")

        with pytest.raises(DriveBridgeError):
            asyncio.run(self._client(handler).upload(b"x", "image/png", "lan"))

    def test_delete_by_url_is_best_effort(self):
        def handler(request):
            return httpx.Response(500)

        client = self._client(handler)

        assert asyncio.run(client.delete_by_url(f"https://drive.google.com/file/d/{FILE_ID}/view")) is False
        assert asyncio.run(client.delete_by_url("https://example.com/a.png")) is False

    def test_unconfigured(self):
        from cme_tracker.services.integrations import DriveBridgeClient, DriveBridgeError

        client = DriveBridgeClient(url="", token="")

        assert client.configured is False
        with pytest.raises(DriveBridgeError):
            asyncio.run(client.delete(FILE_ID))


# =============================================================================
# TEST: GEMINI
# =============================================================================

def _gemini_reply(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class TestParseExtraction:

    def test_plain_json(self):
        from cme_tracker.services.integrations import parse_extraction

        result = parse_extraction('{"name": "Hồi sức", "date": "2024-03-05", "credits": 8}')

        assert (result.name, result.date, result.credits) == ("Hồi sức", "2024-03-05", 8.0)

    def test_fenced_reply_and_day_first_date(self):
        from cme_tracker.services.integrations import parse_extraction

        result = parse_extraction('```json\n{"name": null, "date": "05/03/2024", "credits": "1,5"}\n```')

        assert result.name is None
        assert result.date == "2024-03-05"
        assert result.credits == 1.5

    def test_garbage(self):
        from cme_tracker.services.integrations import parse_extraction, ExtractionError

        with pytest.raises(ExtractionError):
            parse_extraction("Xin lỗi, tôi không đọc được ảnh này.")

    def test_mask_api_key(self):
        from cme_tracker.services.integrations import mask_api_key

        assert mask_api_key("AIzaSyA1234567890abcdefXYZ") == "AIzaSyA1...bcdefXYZ"
        assert mask_api_key("short") == "***"


class TestGeminiClient:

    def _client(self, handler, key="test-key"):
        from cme_tracker.services.integrations import GeminiClient
        return GeminiClient(key, transport=httpx.MockTransport(handler))

    def test_extract_sends_inline_image(self):
        seen = {}

        def handler(request):
            seen["key"] = request.url.params["key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_gemini_reply('{"name": "A", "date": "2024-01-01", "credits": 2}'))

        result = asyncio.run(self._client(handler).extract_certificate_fields(b"img", "image/jpeg"))

        assert result.credits == 2.0
        assert seen["key"] == "test-key"
        assert seen["body"]["generationConfig"]["responseMimeType"] == "application/json"
        assert seen["body"]["contents"][0]["parts"][0]["inlineData"]["mimeType"] == "image/jpeg"

    def test_chat(self):
        def handler(request):
            return httpx.Response(200, json=_gemini_reply("Xin chào!"))

        assert asyncio.run(self._client(handler).chat("Chào")) == "Xin chào!"

    def test_missing_key(self):
        from cme_tracker.services.integrations import AINotConfiguredError

        with pytest.raises(AINotConfiguredError):
            asyncio.run(self._client(lambda request: httpx.Response(200), key=None).chat("hi"))

    @pytest.mark.parametrize("status,body", [
        (403, {"error": "denied"}),
        (200, {"candidates": []}),
    ])
    def test_service_errors(self, status, body):
        from cme_tracker.services.integrations import AIServiceError

        def handler(request):
            return httpx.Response(status, json=body)

        with pytest.raises(AIServiceError):
            asyncio.run(self._client(handler).chat("hi"))
