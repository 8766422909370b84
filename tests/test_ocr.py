import base64
import json

import pytest
from openai import OpenAIError

from errors import ExtractionError, MissingCredential
from ocr import (CardExtractor, guess_mime, normalize_extracted, parse_response, prepare_image,
                 strip_code_fence)

from conftest import PNG_BYTES, stub_client_factory

FULL = {
    "name": "Jane Doe",
    "company": "Acme",
    "phone": ["+1 555 0100"],
    "email": ["jane@acme.test"],
    "website": "https://acme.test",
    "description": "Head of sales",
    "tags": ["sales", "b2b"],
}


class TestNormalize:
    def test_full_payload(self):
        assert normalize_extracted(FULL) == FULL

    def test_nulls_and_scalars(self):
        out = normalize_extracted({"name": None, "company": "", "tags": None,
                                   "phone": "555", "email": None})
        assert out["name"] is None
        assert out["company"] is None
        assert out["phone"] == ["555"]
        assert out["email"] == []
        assert out["tags"] == []
        assert out["website"] is None

    def test_tags_deduplicated(self):
        out = normalize_extracted({"name": "x", "company": None, "tags": ["a", "b", "a"]})
        assert out["tags"] == ["a", "b"]

    def test_missing_required_field(self):
        with pytest.raises(ExtractionError, match="tags"):
            normalize_extracted({"name": "x", "company": "y"})

    def test_wrong_type(self):
        with pytest.raises(ExtractionError):
            normalize_extracted({"name": 42, "company": None, "tags": []})

    def test_not_an_object(self):
        with pytest.raises(ExtractionError):
            normalize_extracted(["name"])


class TestParseResponse:
    def test_code_fence_stripped(self):
        content = "```json\n" + json.dumps(FULL) + "\n```"
        assert parse_response(content) == FULL

    def test_strip_code_fence_plain(self):
        assert strip_code_fence('  {"a": 1} ') == '{"a": 1}'

    @pytest.mark.parametrize("content", [None, "", "   "])
    def test_empty(self, content):
        with pytest.raises(ExtractionError, match="No response"):
            parse_response(content)

    def test_invalid_json(self):
        with pytest.raises(ExtractionError, match="valid JSON"):
            parse_response("name: Jane")


class TestPrepareImage:
    async def test_bytes(self):
        uri = await prepare_image(PNG_BYTES)
        assert uri.startswith("data:image/png;base64,")
        assert base64.b64decode(uri.split(",", 1)[1]) == PNG_BYTES

    async def test_uploaded_file(self):
        class Upload:
            name = "card.JPG"
            def getvalue(self):
                return b"whatever"
        uri = await prepare_image(Upload())
        assert uri.startswith("data:image/jpeg;base64,")

    async def test_path(self, tmp_path):
        path = tmp_path / "card.webp"
        path.write_bytes(b"RIFF0000WEBP")
        assert (await prepare_image(path)).startswith("data:image/webp;base64,")

    async def test_data_uri_passthrough(self):
        uri = "data:image/png;base64,AAAA"
        assert await prepare_image(uri) == uri

    def test_guess_mime_default(self):
        assert guess_mime(b"????") == "image/jpeg"


class TestExtract:
    async def test_success(self):
        factory = stub_client_factory(json.dumps(FULL))
        extractor = CardExtractor(model="test-model", client_factory=factory)
        out = await extractor.extract("data:image/png;base64,AAAA", "sk-test")
        assert out == FULL
        request = factory.calls[-1]
        assert request["model"] == "test-model"
        assert request["messages"][1]["content"][0]["image_url"]["url"] == "data:image/png;base64,AAAA"
        # 1 回の呼び出しのみ
        assert len([c for c in factory.calls if "messages" in c]) == 1

    @pytest.mark.parametrize("credential", [None, "", "   "])
    async def test_missing_credential(self, credential):
        factory = stub_client_factory(json.dumps(FULL))
        extractor = CardExtractor(client_factory=factory)
        with pytest.raises(MissingCredential):
            await extractor.extract("data:", credential)
        assert factory.calls == []

    async def test_transport_error(self):
        factory = stub_client_factory(error=OpenAIError("rate limit exceeded"))
        extractor = CardExtractor(client_factory=factory)
        with pytest.raises(ExtractionError, match="rate limit"):
            await extractor.extract("data:", "sk-test")

    async def test_schema_violation(self):
        factory = stub_client_factory(json.dumps({"name": "x"}))
        extractor = CardExtractor(client_factory=factory)
        with pytest.raises(ExtractionError):
            await extractor.extract("data:", "sk-test")


class TestValidateCredential:
    async def test_accepted(self):
        extractor = CardExtractor(client_factory=stub_client_factory("hi"))
        assert await extractor.validate_credential("sk-test") is True

    async def test_any_failure_is_false(self):
        extractor = CardExtractor(client_factory=stub_client_factory(error=OpenAIError("401")))
        assert await extractor.validate_credential("sk-test") is False

    async def test_blank_is_false(self):
        factory = stub_client_factory("hi")
        assert await CardExtractor(client_factory=factory).validate_credential("  ") is False
        assert factory.calls == []


def test_list_with_non_strings_is_rejected():
    with pytest.raises(ExtractionError, match="array of strings"):
        normalize_extracted({"name": "x", "company": None, "tags": [], "phone": [None]})
