"""
Generative AI client (Google Gemini REST API).

Two uses: pulling {name, date, credits} out of a certificate photo, and
the free-text hospital assistant chat.
"""
import base64
import json
import logging
import os
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

import httpx
from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

EXTRACTION_FALLBACK_MESSAGE = "Phần mềm không lấy được dữ liệu, đề nghị nhập liệu bằng tay."
CHAT_ERROR_MESSAGE = "Rất tiếc, đã xảy ra lỗi khi kết nối với trợ lý AI. Vui lòng thử lại sau."
AI_NOT_CONFIGURED_MESSAGE = "Chưa cấu hình khóa API cho trợ lý AI. Vui lòng liên hệ quản trị viên."

EXTRACTION_INSTRUCTION = """Vai trò: Bạn là một AI chuyên gia trích xuất dữ liệu, được đào tạo đặc biệt để phân tích hình ảnh chứng chỉ đào tạo y khoa liên tục (CME/CPD) bằng tiếng Việt.
Nhiệm vụ: Nhiệm vụ của bạn là trích xuất chính xác các thông tin cụ thể từ hình ảnh chứng chỉ được cung cấp và trả về dưới dạng một đối tượng JSON.
Đầu ra: Chỉ trả về một đối tượng JSON hợp lệ theo cấu trúc sau. TUYỆT ĐỐI không thêm bất kỳ văn bản giải thích, lời chào đầu/kết hay định dạng markdown nào khác.
{
  "name": "string | null",
  "date": "string (YYYY-MM-DD) | null",
  "credits": "number | null"
}
Hướng dẫn chi tiết: Trích xuất tiêu đề chính (name), ngày kết thúc sự kiện (date), và số tiết học (credits). Luôn trả về ngày theo định dạng YYYY-MM-DD. Nếu không chắc, trả về null."""

CHAT_INSTRUCTION = (
    "Bạn là một trợ lý AI hữu ích trong hệ thống quản lý đào tạo liên tục của một bệnh viện tại Việt Nam. "
    "Hãy trả lời các câu hỏi của người dùng một cách ngắn gọn, chuyên nghiệp và chính xác. Sử dụng tiếng Việt."
)


class AIServiceError(Exception):
    """The generative API call failed or returned nothing usable."""
    pass


class AINotConfiguredError(AIServiceError):
    """No API key has been registered."""
    pass


class ExtractionError(AIServiceError):
    """The reply to an extraction request could not be parsed."""
    pass


@dataclass
class ExtractedCertificate:
    name: Optional[str] = None
    date: Optional[str] = None  # YYYY-MM-DD
    credits: Optional[float] = None


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def _normalize_date(value: Any) -> Optional[str]:
    """Any date-looking string -> YYYY-MM-DD, else None. Day-first for Vietnamese dates."""
    if not value:
        return None
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10]).isoformat()
    except ValueError:
        pass
    try:
        return date_parser.parse(text, dayfirst=True).date().isoformat()
    except (ValueError, OverflowError):
        return None


def _normalize_credits(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(str(value).replace(",", "."))
    except ValueError:
        return None


def parse_extraction(text: str) -> ExtractedCertificate:
    """Parse the model's JSON reply into an ExtractedCertificate."""
    try:
        data = json.loads(_strip_code_fence(text))
    except ValueError as e:
        raise ExtractionError("Reply is not valid JSON") from e
    if not isinstance(data, dict):
        raise ExtractionError("Reply is not a JSON object")

    name = data.get("name")
    return ExtractedCertificate(
        name=str(name).strip() if name else None,
        date=_normalize_date(data.get("date")),
        credits=_normalize_credits(data.get("credits")),
    )


def mask_api_key(key: str) -> str:
    """first8...last8, or *** for short keys."""
    if not key or len(key) < 16:
        return "***"
    return f"{key[:8]}...{key[-8:]}"


class GeminiClient:
    """Minimal Gemini generateContent client."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = GEMINI_MODEL,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.transport = transport
        self.base_url = GEMINI_BASE_URL

    async def _generate(self, contents: list, system_instruction: str, json_reply: bool = False) -> str:
        if not self.api_key:
            raise AINotConfiguredError(AI_NOT_CONFIGURED_MESSAGE)

        request_body: dict = {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": system_instruction}]},
        }
        if json_reply:
            request_body["generationConfig"] = {"responseMimeType": "application/json"}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/models/{self.model}:generateContent",
                    params={"key": self.api_key},
                    headers={"Content-Type": "application/json"},
                    json=request_body,
                )
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                logger.error(f"Gemini returned HTTP {e.response.status_code}")
                raise AIServiceError(f"Gemini returned HTTP {e.response.status_code}") from e
            except httpx.HTTPError as e:
                logger.error(f"Gemini request failed: {e}")
                raise AIServiceError(f"Gemini request failed: {e}") from e
            except ValueError as e:
                raise AIServiceError("Gemini returned a non-JSON response") from e

        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error(f"Gemini response has no text candidate: {str(data)[:200]}")
            raise AIServiceError("Gemini response has no text") from e

    async def extract_certificate_fields(self, image: bytes, mime_type: str) -> ExtractedCertificate:
        """Read name, date and credits from a certificate image."""
        contents = [{
            "parts": [{
                "inlineData": {
                    "mimeType": mime_type,
                    "data": base64.b64encode(image).decode("ascii"),
                }
            }]
        }]
        text = await self._generate(contents, EXTRACTION_INSTRUCTION, json_reply=True)
        result = parse_extraction(text)
        logger.info(f"Extracted certificate fields: name={result.name!r} date={result.date} credits={result.credits}")
        return result

    async def chat(self, message: str) -> str:
        contents = [{"role": "user", "parts": [{"text": message}]}]
        return await self._generate(contents, CHAT_INSTRUCTION)
