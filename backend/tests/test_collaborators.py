"""
Tests for the adapters around the pipeline: LLM client, Celery dispatch,
entitlements and the worker task wrappers.
"""
from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest

from nuggets.services.dispatch import SUMMARIZE_ITEM, CeleryDispatcher
from nuggets.services.entitlements import StaticEntitlementSource
from nuggets.services.errors import AIUnavailable
from nuggets.services.feeds import FeedFetchError
from nuggets.services.grouping import _load_keyword_table
from nuggets.services.llm import OpenAITextGenerator


def _completion(content):
    return MagicMock(choices=[MagicMock(message=MagicMock(content=content))])


class TestOpenAITextGenerator:
    """Tests for OpenAITextGenerator."""

    def test_returns_message_content(self):
        client = MagicMock()
        client.chat.completions.create.return_value = _completion('{"title": "x"}')
        gen = OpenAITextGenerator(client=client, model="test-model")

        assert gen.generate("prompt", max_tokens=42) == '{"title": "x"}'
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["max_tokens"] == 42
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]

    def test_provider_error_becomes_ai_unavailable(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", "https://api.example.com/v1/chat/completions")
        )
        with pytest.raises(AIUnavailable):
            OpenAITextGenerator(client=client, model="m").generate("prompt")

    def test_no_choices(self):
        client = MagicMock()
        client.chat.completions.create.return_value = MagicMock(choices=[])
        with pytest.raises(AIUnavailable):
            OpenAITextGenerator(client=client, model="m").generate("prompt")


class TestCeleryDispatcher:
    """Tests for CeleryDispatcher."""

    def test_sends_named_task_on_processing_queue(self):
        app = MagicMock()
        payload = {"owner_id": "o", "item_id": "i", "group_id": None}
        CeleryDispatcher(app=app).dispatch(SUMMARIZE_ITEM, payload)
        app.send_task.assert_called_once_with(
            "nuggets.services.tasks.summarize_item", kwargs=payload, queue="processing"
        )

    def test_unknown_unit_rejected(self):
        app = MagicMock()
        with pytest.raises(ValueError):
            CeleryDispatcher(app=app).dispatch("make_coffee", {})
        app.send_task.assert_not_called()


class TestEntitlements:
    """Tests for StaticEntitlementSource."""

    def test_tier_limits(self):
        source = StaticEntitlementSource(
            owner_tiers={"a": "free", "b": "pro", "c": "ultimate"}, default_tier="free", free_ai_enabled=True
        )
        assert [source.for_owner(o).batch_limit for o in "abc"] == [3, 10, 15]
        assert source.for_owner("a").auto_process_enabled is False
        assert source.for_owner("b").auto_process_enabled is True

    def test_free_ai_can_be_disabled(self):
        source = StaticEntitlementSource(owner_tiers={}, default_tier="free", free_ai_enabled=False)
        assert source.for_owner("anyone").ai_processing_enabled is False

    def test_unknown_tier_falls_back_to_free(self):
        source = StaticEntitlementSource(owner_tiers={"a": "platinum"}, default_tier="pro", free_ai_enabled=True)
        assert source.for_owner("a").tier == "free"

    def test_owner_tiers_from_json(self):
        assert StaticEntitlementSource._load_owner_tiers('{"a": "pro"}') == {"a": "pro"}
        assert StaticEntitlementSource._load_owner_tiers("not json") == {}
        assert StaticEntitlementSource._load_owner_tiers("[1, 2]") == {}


class TestKeywordTableOverride:
    """Tests for CATEGORY_KEYWORDS_JSON parsing."""

    def test_valid_table(self):
        assert _load_keyword_table('{"cooking": ["recipe"]}') == {"cooking": ["recipe"]}

    def test_invalid_table_uses_builtin(self):
        assert _load_keyword_table("{oops") is None
        assert _load_keyword_table('{"cooking": "recipe"}') is None
        assert _load_keyword_table(None) is None


class TestWorkerTasks:
    """Celery task wrappers delegate to the process-wide pipeline."""

    def test_summarize_item_delegates(self):
        from nuggets.services import tasks

        with patch.object(tasks, "get_pipeline") as get_pipeline:
            tasks.summarize_item("o", "i", group_id="g")
        get_pipeline.return_value.process_item.assert_called_once_with("o", "i", group_id="g")

    def test_summarize_item_reraises(self):
        from nuggets.services import tasks

        with patch.object(tasks, "get_pipeline") as get_pipeline:
            get_pipeline.return_value.process_item.side_effect = RuntimeError("db down")
            with pytest.raises(RuntimeError):
                tasks.summarize_item("o", "i")

    def test_unreachable_feed_is_not_retried(self):
        from nuggets.services import tasks

        with patch.object(tasks, "get_pipeline") as get_pipeline:
            get_pipeline.return_value.ingest_feed.side_effect = FeedFetchError("404")
            assert tasks.ingest_feed("o", "feed-1", "https://feed.example.com/rss") == 0

    def test_requeue_stale_task(self):
        from nuggets.services import maintenance

        with patch.object(maintenance, "get_pipeline") as get_pipeline:
            get_pipeline.return_value.requeue_stale.return_value = 2
            assert maintenance.requeue_stale_processing() == 2
