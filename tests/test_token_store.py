from datetime import UTC, datetime

from app.core.config import Settings
from app.services.oauth_token_exchanger import AuthTokenSet
from app.services.token_store import (
    InMemoryTokenStore,
    clear_token_store_cache,
    create_token_store,
)


def test_in_memory_store_saves_loads_and_clears() -> None:
    store = InMemoryTokenStore()
    token_set = AuthTokenSet(
        access_token="access",
        refresh_token="refresh",
        expires_at=datetime(2024, 6, 10, 12, tzinfo=UTC),
    )

    assert store.load() is None
    store.save(token_set)
    assert store.load() == token_set
    store.clear()
    assert store.load() is None


def test_factory_returns_cached_store_per_configuration() -> None:
    clear_token_store_cache()
    settings = Settings(token_store="memory")

    first = create_token_store(settings)
    second = create_token_store(settings)

    assert first is second
    assert isinstance(first, InMemoryTokenStore)
    clear_token_store_cache()
    assert create_token_store(settings) is not first
