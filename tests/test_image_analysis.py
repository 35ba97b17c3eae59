"""Tests for the image analysis flow and the OpenAI advisor."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from realprice.ai.analysis import AIServiceError, ImageAnalysisFlow, OpenAIProductAdvisor
from realprice.ai.llm_service import LLMService, image_data_uri, parse_json_response
from realprice.normalize.catalog import CatalogOutcome
from realprice.notify.notifications import NotificationCenter

IMAGE = b"\x89PNG fake image"


def make_flow(store, identified="Smartphone", related=None, notifications=None):
    identifier = AsyncMock()
    identifier.identify.return_value = identified
    suggester = AsyncMock()
    suggester.related_products.return_value = related or []
    flow = ImageAnalysisFlow(store, identifier, suggester, notifications=notifications)
    return flow, identifier, suggester


async def seed_catalog(store, *names):
    for i, name in enumerate(names):
        await store.set(
            f"canonicalProducts/c{i}",
            {"name": name, "normalizedName": name.lower(), "category": "Electronics"},
        )


@pytest.mark.asyncio
async def test_identified_product_missing_from_catalog_is_suggested(store):
    await seed_catalog(store, "Phone Case")
    flow, _, suggester = make_flow(store, related=["Phone Case", "Charger"])

    result = await flow.analyze(IMAGE, mime_type="image/png", lang="pt")

    assert result.ok
    assert result.product_identification == "Smartphone"
    assert result.catalog_check.outcome == CatalogOutcome.SUGGESTED
    assert result.related_products == ["Phone Case"]
    suggester.related_products.assert_awaited_once_with("Smartphone", ["Phone Case"])
    suggestion = next(iter((await store.get_children("suggestedNewProducts")).values()))
    assert suggestion["source"] == "image-analysis"
    assert suggestion["lang"] == "pt"


@pytest.mark.asyncio
async def test_related_products_fall_back_to_ai_output(store):
    flow, _, _ = make_flow(store, related=["Case", "Charger"])
    result = await flow.analyze(IMAGE)
    assert result.related_products == ["Case", "Charger"]


@pytest.mark.asyncio
async def test_identification_failure_is_non_fatal(store):
    notifications = NotificationCenter()
    flow, identifier, suggester = make_flow(store, notifications=notifications)
    identifier.identify.side_effect = AIServiceError("identify", "quota")

    result = await flow.analyze(IMAGE)

    assert not result.ok
    assert "quota" in result.error
    suggester.related_products.assert_not_awaited()
    assert len(notifications.drain()) == 1
    assert await store.get_children("suggestedNewProducts") == {}


@pytest.mark.asyncio
async def test_related_failure_keeps_identification(store):
    flow, _, suggester = make_flow(store)
    suggester.related_products.side_effect = AIServiceError("related_products", "timeout")

    result = await flow.analyze(IMAGE)

    assert result.ok
    assert result.product_identification == "Smartphone"
    assert result.related_products == []
    assert "timeout" in result.related_error


@pytest.mark.asyncio
async def test_unexpected_identifier_error_is_wrapped(store):
    notifications = NotificationCenter()
    flow, identifier, _ = make_flow(store, notifications=notifications)
    identifier.identify.side_effect = ConnectionError("socket closed")

    result = await flow.analyze(IMAGE)

    assert not result.ok
    assert "identify" in result.error
    assert "socket closed" in result.error
    assert len(notifications.drain()) == 1


@pytest.mark.asyncio
async def test_unexpected_suggester_error_is_wrapped(store):
    flow, _, suggester = make_flow(store)
    suggester.related_products.side_effect = ValueError("bad payload")

    result = await flow.analyze(IMAGE)

    assert result.ok
    assert result.catalog_check.outcome == CatalogOutcome.SUGGESTED
    assert "bad payload" in result.related_error


class TestOpenAIProductAdvisor:
    def setup_method(self):
        self.llm = MagicMock(spec=LLMService)
        self.llm.call_vision_structured = AsyncMock()
        self.llm.call_llm_structured = AsyncMock()
        self.advisor = OpenAIProductAdvisor(llm=self.llm)

    @pytest.mark.asyncio
    async def test_identify(self):
        self.llm.call_vision_structured.return_value = {"productIdentification": " iPhone 15 Pro "}
        assert await self.advisor.identify(IMAGE) == "iPhone 15 Pro"

    @pytest.mark.asyncio
    async def test_identify_empty_answer_raises(self):
        self.llm.call_vision_structured.return_value = {"productIdentification": ""}
        with pytest.raises(AIServiceError):
            await self.advisor.identify(IMAGE)

    @pytest.mark.asyncio
    async def test_identify_wraps_client_errors(self):
        self.llm.call_vision_structured.side_effect = RuntimeError("network down")
        with pytest.raises(AIServiceError):
            await self.advisor.identify(IMAGE)

    @pytest.mark.asyncio
    async def test_related_products_limited_and_cleaned(self):
        self.llm.call_llm_structured.return_value = {
            "relatedProductNames": ["a", " ", "b", "c", "d", "e", "f"],
        }
        names = await self.advisor.related_products("phone", ["a"])
        assert names == ["a", "b", "c", "d", "e"]
        prompt = self.llm.call_llm_structured.call_args.args[0]
        assert "phone" in prompt and "a" in prompt

    @pytest.mark.asyncio
    async def test_related_products_malformed(self):
        self.llm.call_llm_structured.return_value = {"names": []}
        with pytest.raises(AIServiceError):
            await self.advisor.related_products("phone", [])


class TestLLMHelpers:
    def test_parse_fenced_json(self):
        assert parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}

    def test_parse_rejects_non_object(self):
        with pytest.raises(ValueError):
            parse_json_response("[1, 2]")
        with pytest.raises(ValueError):
            parse_json_response("not json")

    def test_image_data_uri(self):
        assert image_data_uri(b"abc", "image/png") == "data:image/png;base64,YWJj"

    @pytest.mark.asyncio
    async def test_call_llm_uses_client(self):
        client = MagicMock()
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = '{"ok": true}'
        client.chat.completions.create = AsyncMock(return_value=response)

        service = LLMService(client=client)
        result = await service.call_llm_structured("hi", {"type": "object"})

        assert result == {"ok": True}
        assert service.get_stats()["call_count"] == 1
