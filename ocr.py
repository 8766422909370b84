# ocr.py
import asyncio
import base64
import json
import mimetypes
import os
import re
import sys
from typing import Any, Optional

from openai import AsyncOpenAI, OpenAIError

from config import CONFIG
from errors import ExtractionError, MissingCredential
from migrate import as_list
from models import ExtractedFields

CARD_PROMPT = """
Analyze this business card image and extract the following information
in JSON format.

Instructions:
1. Be strict - only extract what is clearly visible or inferred from a QR code.
2. If a field is missing, return null. DO NOT use placeholders like "N/A" or "Unknown".
3. Check for a QR code. If one is present and visually decodable as a URL or vCard,
   use its content to fill in missing details (e.g., website, email, phone).
4. If a URL is found (text or QR), prioritize it for the 'website' field.

Required JSON structure:
{
  "name": "string or null",
  "company": "string or null",
  "phone": ["string array of phone numbers"],
  "email": ["string array of emails"],
  "website": "string or null",
  "description": "string (what company does, or person's role)",
  "tags": ["array of 2-4 relevant category tags"]
}

Return ONLY valid JSON.
"""

_NULLABLE_STRING = {"type": ["string", "null"]}
_NULLABLE_LIST = {"type": ["array", "null"], "items": {"type": "string"}}

CARD_SCHEMA = {
    "type": "object",
    "properties": {
        "name": _NULLABLE_STRING,
        "company": _NULLABLE_STRING,
        "phone": _NULLABLE_LIST,
        "email": _NULLABLE_LIST,
        "website": _NULLABLE_STRING,
        "description": _NULLABLE_STRING,
        "tags": _NULLABLE_LIST,
    },
    "required": ["name", "company", "phone", "email", "website", "description", "tags"],
    "additionalProperties": False,
}

REQUIRED_FIELDS = ("name", "company", "tags")

_MAGIC = (
    (b"\x89PNG", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"RIFF", "image/webp"),
    (b"GIF8", "image/gif"),
)
_DATA_URI = re.compile(r"^data:(image/[\w.+-]+);base64,")


# ====== 画像の前処理 ==========================================================
def _read_image(image: Any) -> tuple[bytes, str]:
    if isinstance(image, (bytes, bytearray)):
        return bytes(image), ""
    if isinstance(image, (str, os.PathLike)):
        with open(image, "rb") as f:
            return f.read(), os.fspath(image)
    # Streamlit の UploadedFile / camera_input
    filename = getattr(image, "name", "") or ""
    return image.getvalue(), filename


def guess_mime(data: bytes, filename: str = "") -> str:
    # ファイル名から MIME タイプを判定、だめなら先頭バイトで判定
    mime, _ = mimetypes.guess_type(filename.lower()) if filename else (None, None)
    if mime and mime.startswith("image/"):
        return mime
    for magic, sniffed in _MAGIC:
        if data.startswith(magic):
            return sniffed
    return "image/jpeg"


def to_data_uri(image: Any) -> str:
    data, filename = _read_image(image)
    mime_type = guess_mime(data, filename)
    return f"data:{mime_type};base64," + base64.b64encode(data).decode()


async def prepare_image(image: Any) -> str:
    """Convert raw bytes, a path or an uploaded file into a base64 data URI."""
    if isinstance(image, str) and _DATA_URI.match(image):
        return image
    return await asyncio.to_thread(to_data_uri, image)


# ====== レスポンスの正規化 ====================================================
def strip_code_fence(content: str) -> str:
    # ```json ... ``` を削除
    content = content.strip()
    if content.startswith("```"):
        first_newline = content.find("\n")
        content = content[first_newline + 1:] if first_newline != -1 else ""
        last_backticks = content.rfind("```")
        if last_backticks != -1:
            content = content[:last_backticks]
    return content.strip()


def _scalar(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ExtractionError(f"expected a string or null, got {type(value).__name__}")
    return value.strip() or None


def _strings(value: Any) -> list[str]:
    if isinstance(value, list) and not all(isinstance(v, str) for v in value):
        raise ExtractionError("expected an array of strings")
    items = as_list(value)
    return [v.strip() for v in items if v.strip()]


def normalize_extracted(data: Any) -> ExtractedFields:
    if not isinstance(data, dict):
        raise ExtractionError(f"response is not a JSON object: {type(data).__name__}")
    missing = [f for f in REQUIRED_FIELDS if f not in data]
    if missing:
        raise ExtractionError(f"response is missing required fields: {', '.join(missing)}")

    tags: list[str] = []
    for tag in _strings(data.get("tags")):
        if tag not in tags:
            tags.append(tag)

    return {
        "name": _scalar(data.get("name")),
        "company": _scalar(data.get("company")),
        "phone": _strings(data.get("phone")),
        "email": _strings(data.get("email")),
        "website": _scalar(data.get("website")),
        "description": _scalar(data.get("description")),
        "tags": tags,
    }


def parse_response(raw_content: Optional[str]) -> ExtractedFields:
    if not raw_content or not raw_content.strip():
        raise ExtractionError("No response from the vision model")
    content_to_parse = strip_code_fence(raw_content)
    try:
        data = json.loads(content_to_parse)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"response is not valid JSON: {e}") from e
    return normalize_extracted(data)


# ====== Vision OCR ============================================================
class CardExtractor:
    """Single-shot business-card extraction against the OpenAI vision API."""

    def __init__(self, model: str = CONFIG.model, client_factory=AsyncOpenAI):
        self.model = model
        self.client_factory = client_factory

    def _client(self, credential: str):
        return self.client_factory(api_key=credential, max_retries=0)

    async def extract(self, image_uri: str, credential: Optional[str]) -> ExtractedFields:
        if not credential or not credential.strip():
            raise MissingCredential()

        client = self._client(credential)
        try:
            resp = await client.chat.completions.create(
                model=self.model,
                temperature=0,
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": "business_card", "strict": True, "schema": CARD_SCHEMA},
                },
                messages=[
                    {"role": "system", "content": CARD_PROMPT},
                    {"role": "user", "content": [
                        {"type": "image_url", "image_url": {"url": image_uri}}
                    ]},
                ],
            )
        except OpenAIError as e:
            print(f"[cardsnap] extraction request failed: {e}", file=sys.stderr)
            raise ExtractionError(str(e) or type(e).__name__) from e

        if not resp.choices:
            raise ExtractionError("No response from the vision model")
        return parse_response(resp.choices[0].message.content)

    async def validate_credential(self, candidate: Optional[str]) -> bool:
        # 失敗理由（ネットワーク・認証・クォータ）は区別しない
        if not candidate or not candidate.strip():
            return False
        client = self._client(candidate.strip())
        try:
            await client.chat.completions.create(
                model=self.model,
                max_tokens=1,
                messages=[{"role": "user", "content": "Hello"}],
            )
        except Exception as e:
            print(f"[cardsnap] API key validation failed: {e}", file=sys.stderr)
            return False
        return True
