import os

# Settings are read at import time; keep tests off real services
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nuggets.core.db import Base
from nuggets.models import content_item, dedup_record, processing_event, processing_group  # noqa: F401
from nuggets.services.dedup import DedupLedger
from nuggets.services.entitlements import StaticEntitlementSource
from nuggets.services.feeds import FeedFetcher
from nuggets.services.grouping import CategoryClassifier
from nuggets.services.pipeline import NuggetPipeline
from nuggets.services.store import ItemStore
from nuggets.services.summarizer import Summarizer
from nuggets.services.synthesis_cache import DigestSynthesisCache

from tests.fixtures.pipeline_fixtures import FakeTextGenerator, RecordingDispatcher


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return ItemStore(session_factory)


@pytest.fixture
def classifier():
    return CategoryClassifier()


@pytest.fixture
def generator():
    return FakeTextGenerator()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def owner_tiers():
    return {"owner-pro": "pro", "owner-free": "free", "owner-ultimate": "ultimate"}


@pytest.fixture
def feed_routes():
    """URL -> (status, body) served to the feed fetcher."""
    return {}


@pytest.fixture
def pipeline(store, classifier, generator, dispatcher, owner_tiers, feed_routes):
    from tests.fixtures.pipeline_fixtures import html_handler

    feed_client = httpx.Client(transport=httpx.MockTransport(html_handler(feed_routes)))
    return NuggetPipeline(
        store=store,
        ledger=DedupLedger(store, retention_days=30),
        cache=DigestSynthesisCache(store),
        summarizer=Summarizer(generator),
        dispatcher=dispatcher,
        entitlements=StaticEntitlementSource(owner_tiers=owner_tiers, default_tier="pro", free_ai_enabled=True),
        classifier=classifier,
        scraper=None,
        feed_fetcher=FeedFetcher(client=feed_client),
    )
