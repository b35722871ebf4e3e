"""End-to-end pipeline tests plus config, scheduling, LLM and CLI helpers."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import List
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from aginews.config import ConfigError, load_config, resolve_env
from aginews.connectors.base import BaseConnector
from aginews.connectors.schemas import ExtractedStory
from aginews.connectors.social import SocialConnector, XSearchClient, is_social_url
from aginews.delivery.engine import REPORT_NOT_SENT, REPORT_SENT, DeliveryEngine
from aginews.delivery.transport import OutgoingEmail
from aginews.digest.composer import NewsletterComposer, stories_context
from aginews.llm import LLMClient, LLMError, ModelFallbackChain
from aginews.pipeline.cli import cli
from aginews.pipeline.clients import build_clients
from aginews.pipeline.orchestrator import NewsletterPipeline, next_run_at, seed_from_config
from aginews.pipeline.scraper import SourceScraper
from aginews.retry import RetryPolicy
from aginews.storage.db import DatabaseManager
from aginews.storage.models import NEWSLETTER_SENT, Source, Story


class FakeTransport:
    def __init__(self):
        self.sent: List[OutgoingEmail] = []

    async def send(self, message: OutgoingEmail) -> None:
        self.sent.append(message)


class StaticConnector(BaseConnector):
    def __init__(self, stories: List[ExtractedStory]):
        self.stories = stories

    async def fetch(self, source):
        return list(self.stories)


class BrokenConnector(BaseConnector):
    async def fetch(self, source):
        raise RuntimeError("site down")


@pytest.fixture
async def db(tmp_path):
    manager = DatabaseManager(str(tmp_path / "pipeline.db"))
    await manager.initialize()
    yield manager
    await manager.close()


def long_stories(prefix: str, count: int) -> List[ExtractedStory]:
    return [
        ExtractedStory(
            title=f"{prefix} story {i}",
            url=f"https://{prefix}.example.com/{i}",
            content="A longer body about language models. " * 4,
            summary="A new model tops the reasoning benchmarks this week. " * 2,
        )
        for i in range(count)
    ]


def mock_chain() -> ModelFallbackChain:
    return ModelFallbackChain(LLMClient({"llm": {"provider": "mock"}}), ["mock-model"])


async def seed(db: DatabaseManager, urls: List[str], emails: List[str]) -> None:
    for url in urls:
        await db.upsert_source(Source.from_config({"url": url}))
    for email in emails:
        await db.add_subscriber(email)


class TestNewsletterPipeline:
    @pytest.mark.asyncio
    async def test_full_run(self, db):
        await seed(
            db,
            ["https://a.example.com", "https://broken.example.com", "https://x.com/karpathy"],
            ["one@example.com", "two@example.com"],
        )
        connectors = {
            "https://a.example.com": StaticConnector(long_stories("a", 3)),
            "https://broken.example.com": BrokenConnector(),
            "https://x.com/karpathy": StaticConnector([]),
        }
        transport = FakeTransport()
        pipeline = NewsletterPipeline(
            db=db,
            scraper=SourceScraper(lambda s: connectors[s.url]),
            composer=NewsletterComposer(mock_chain(), use_template=True),
            delivery=DeliveryEngine(db, transport, from_addr="news@example.com"),
        )

        result = await pipeline.run()

        assert result.success, result.error
        assert result.stories_saved == 3
        assert result.scrape.total_errors == 1
        assert result.newsletter_id is not None
        assert result.delivery.status == REPORT_SENT
        assert result.delivery.sent == 2
        assert sorted(m.to for m in transport.sent) == ["one@example.com", "two@example.com"]
        assert "a story 0" in transport.sent[0].html

        latest = await db.get_latest_newsletter()
        assert latest.id == result.newsletter_id
        assert latest.status == NEWSLETTER_SENT
        assert await db.count_stories() == 3

    @pytest.mark.asyncio
    async def test_no_stories_sends_nothing(self, db):
        await seed(db, ["https://a.example.com"], ["one@example.com"])
        transport = FakeTransport()
        pipeline = NewsletterPipeline(
            db=db,
            scraper=SourceScraper(lambda s: StaticConnector([])),
            composer=NewsletterComposer(mock_chain(), use_template=True),
            delivery=DeliveryEngine(db, transport, from_addr="news@example.com"),
        )

        result = await pipeline.run()

        assert result.success
        assert result.newsletter_id is None
        assert result.delivery.status == REPORT_NOT_SENT
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_compose_failure_is_captured(self, db):
        await seed(db, ["https://a.example.com"], ["one@example.com"])

        class DeadLLM:
            async def complete(self, prompt, model):
                raise LLMError("quota exceeded")

        transport = FakeTransport()
        pipeline = NewsletterPipeline(
            db=db,
            scraper=SourceScraper(lambda s: StaticConnector(long_stories("a", 2))),
            composer=NewsletterComposer(ModelFallbackChain(DeadLLM(), ["m1", "m2"])),
            delivery=DeliveryEngine(db, transport, from_addr="news@example.com"),
        )

        result = await pipeline.run()

        assert not result.success
        assert "All models failed" in result.error
        assert result.stories_saved == 2
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_from_config_with_mock_provider(self, db):
        config = {
            "llm": {"provider": "mock"},
            "firecrawl": {"api_key": "fc-test"},
            "email": {"resend": {"api_key": "re_test"}, "batch_size": 10},
        }
        pipeline = NewsletterPipeline.from_config(db, build_clients(config), config)
        assert pipeline.composer.use_template is True
        assert pipeline.delivery.batch_size == 10


    @pytest.mark.asyncio
    async def test_missing_social_token_ends_run(self, db):
        await seed(db, ["https://a.example.com", "https://x.com/karpathy"], ["one@example.com"])
        web = StaticConnector(long_stories("a", 3))
        social = SocialConnector(XSearchClient(), bearer_token="")
        transport = FakeTransport()
        pipeline = NewsletterPipeline(
            db=db,
            scraper=SourceScraper(lambda s: social if is_social_url(s.url) else web),
            composer=NewsletterComposer(mock_chain(), use_template=True),
            delivery=DeliveryEngine(db, transport, from_addr="news@example.com"),
        )

        result = await pipeline.run()

        assert not result.success
        assert result.error.startswith("ConfigError")
        assert result.stories_saved == 0
        assert transport.sent == []


class TestComposer:
    @pytest.mark.asyncio
    async def test_empty_stories_give_empty_newsletter(self):
        newsletter = await NewsletterComposer(mock_chain()).compose([])
        assert newsletter.content == ""

    @pytest.mark.asyncio
    async def test_llm_output_is_unfenced(self):
        client = LLMClient({"llm": {"provider": "mock"}})
        client.mock_response = lambda prompt, model: "```html\n<p>Hello</p>\n```"
        composer = NewsletterComposer(ModelFallbackChain(client, ["m"]))
        story = Story(title="T", url="https://t.com", source_id=1)
        newsletter = await composer.compose([story])
        assert newsletter.content == "<p>Hello</p>"

    def test_template_escapes_html(self):
        composer = NewsletterComposer(mock_chain(), use_template=True)
        content = composer.render_template([
            Story(title="<GPT>", url="https://t.com/?a=1&b=2", source_id=1, summary="s & t"),
        ])
        assert "&lt;GPT&gt;" in content
        assert "a=1&amp;b=2" in content
        assert "s &amp; t" in content

    def test_stories_context_is_json(self):
        data = json.loads(stories_context([Story(title="T", url="https://t.com", source_id=3)]))
        assert data[0]["title"] == "T"
        assert data[0]["source_id"] == 3


class TestScheduling:
    @pytest.mark.parametrize("current,expected", [
        (datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc), datetime(2025, 1, 1, 14, 0, tzinfo=timezone.utc)),
        (datetime(2025, 1, 1, 14, 0, tzinfo=timezone.utc), datetime(2025, 1, 2, 14, 0, tzinfo=timezone.utc)),
        (datetime(2025, 1, 31, 20, 0, tzinfo=timezone.utc), datetime(2025, 2, 1, 14, 0, tzinfo=timezone.utc)),
    ])
    def test_next_run_at(self, current, expected):
        assert next_run_at(current, 14, 0) == expected


class TestSeed:
    @pytest.mark.asyncio
    async def test_seed_from_config(self, db):
        config = {
            "sources": [
                {"name": "Blog", "url": "https://blog.example.com"},
                {"url": "https://x.com/karpathy"},
                {"name": "No URL"},
            ],
            "subscribers": ["a@example.com", {"email": "b@example.com", "name": "Bo"}, {"name": "x"}],
        }
        counts = await seed_from_config(db, config)
        assert counts == {"sources": 2, "subscribers": 2}

        sources = await db.get_active_sources()
        assert [s.type for s in sources] == ["web", "social"]

        again = await seed_from_config(db, config)
        assert again == counts
        assert len(await db.get_active_sources()) == 2


class TestConfig:
    def test_resolve_env(self, monkeypatch):
        monkeypatch.setenv("AGINEWS_KEY", "secret")
        monkeypatch.delenv("AGINEWS_MISSING", raising=False)
        resolved = resolve_env({"a": "${AGINEWS_KEY}", "b": ["${AGINEWS_MISSING}"], "c": 3})
        assert resolved == {"a": "secret", "b": [""], "c": 3}

    def test_load_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AGINEWS_KEY", "sk-test")
        path = tmp_path / "config.yaml"
        path.write_text("llm:\n  provider: openai\n  api_key: ${AGINEWS_KEY}\n")
        assert load_config(str(path))["llm"]["api_key"] == "sk-test"

    def test_load_config_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_load_config_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_build_clients_requires_llm_key(self):
        with pytest.raises(ConfigError):
            build_clients({"llm": {"provider": "openai"}, "email": {"resend": {"api_key": "k"}}})

    def test_build_clients_requires_firecrawl_key(self):
        with pytest.raises(ConfigError, match="firecrawl"):
            build_clients({
                "llm": {"provider": "openai", "api_key": "sk-test"},
                "firecrawl": {"api_key": ""},
                "email": {"resend": {"api_key": "k"}},
            })

    def test_build_clients_self_hosted_firecrawl_needs_no_key(self):
        clients = build_clients(
            {"llm": {"provider": "mock"}, "firecrawl": {"base_url": "http://localhost:3002"}},
            require_transport=False,
        )
        assert clients.firecrawl.api_key == ""

    def test_build_clients_without_transport(self):
        clients = build_clients(
            {"llm": {"provider": "mock"}, "firecrawl": {"api_key": "fc-test"}},
            require_transport=False,
        )
        assert clients.transport is None


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        sleeps: List[float] = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        calls = {"n": 0}

        async def flaky():
            calls["n"] += 1
            if calls["n"] < 3:
                raise ValueError("transient")
            return "ok"

        policy = RetryPolicy.fixed(max_attempts=3, delay_seconds=5, sleep=fake_sleep)
        assert await policy.call(flaky) == "ok"
        assert sleeps == [5, 5]

    @pytest.mark.asyncio
    async def test_non_retryable_error_raises_immediately(self):
        calls = {"n": 0}

        async def broken():
            calls["n"] += 1
            raise KeyError("bad")

        async def no_sleep(seconds):
            pass

        policy = RetryPolicy.fixed(
            retryable=lambda e: isinstance(e, ValueError), sleep=no_sleep,
        )
        with pytest.raises(KeyError):
            await policy.call(broken)
        assert calls["n"] == 1


class TestLLMClient:
    @pytest.mark.asyncio
    async def test_mock_provider_default(self):
        client = LLMClient({"llm": {"provider": "mock"}})
        assert await client.complete("anything", "m") == '{"stories": []}'

    def test_defaults(self):
        client = LLMClient({})
        assert client.provider == "openai"
        assert client.api_key == ""


class TestCLI:
    def test_seed_and_status(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text(
            "sources:\n"
            "  - name: Blog\n"
            "    url: https://blog.example.com\n"
            "subscribers:\n"
            "  - reader@example.com\n"
        )
        db_path = str(tmp_path / "cli.db")
        runner = CliRunner()

        result = runner.invoke(cli, ["--config", str(config), "--db", db_path, "seed"])
        assert result.exit_code == 0, result.output
        assert "Seeded 1 sources and 1 subscribers" in result.output

        result = runner.invoke(cli, ["--config", str(config), "--db", db_path, "status"])
        assert result.exit_code == 0, result.output
        assert "Active subscribers: 1" in result.output

    def test_missing_config_exits(self, tmp_path):
        result = CliRunner().invoke(cli, ["--config", str(tmp_path / "missing.yaml"), "status"])
        assert result.exit_code == 1


class TestRunDaily:
    @pytest.mark.asyncio
    async def test_sleeps_until_next_slot_then_runs(self, db):
        class StopLoop(Exception):
            pass

        pipeline = NewsletterPipeline(db, MagicMock(), MagicMock(), MagicMock())
        pipeline.run = AsyncMock(side_effect=[None, StopLoop()])
        now = datetime(2025, 1, 1, 13, 30, tzinfo=timezone.utc)

        with patch("aginews.pipeline.orchestrator.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(StopLoop):
                await pipeline.run_daily(14, 0, now=lambda: now)

        assert sleep.await_args_list[0].args == (1800.0,)
        assert pipeline.run.await_count == 2
