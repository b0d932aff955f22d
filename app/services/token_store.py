from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from functools import lru_cache

from app.core.config import Settings
from app.services.oauth_token_exchanger import AuthTokenSet

DEFAULT_CREDENTIAL_KEY = "company-calendar"


class TokenStore(ABC):
    @abstractmethod
    def load(self) -> AuthTokenSet | None:
        raise NotImplementedError

    @abstractmethod
    def save(self, token_set: AuthTokenSet) -> None:
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        raise NotImplementedError


class InMemoryTokenStore(TokenStore):
    def __init__(self) -> None:
        self._token_set: AuthTokenSet | None = None
        self._lock = threading.Lock()

    def load(self) -> AuthTokenSet | None:
        with self._lock:
            return self._token_set

    def save(self, token_set: AuthTokenSet) -> None:
        with self._lock:
            self._token_set = token_set

    def clear(self) -> None:
        with self._lock:
            self._token_set = None


class MongoTokenStore(TokenStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        collection_name: str,
        credential_key: str = DEFAULT_CREDENTIAL_KEY,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        self._collection = self._client[db_name][collection_name]
        self._credential_key = credential_key
        self._collection.create_index("credential_key", unique=True)

    def load(self) -> AuthTokenSet | None:
        record = self._collection.find_one({"credential_key": self._credential_key})
        if not record:
            return None
        raw_tokens = record.get("tokens")
        if not isinstance(raw_tokens, dict):
            return None
        return AuthTokenSet.from_dict(raw_tokens)

    def save(self, token_set: AuthTokenSet) -> None:
        now = datetime.now(UTC)
        self._collection.update_one(
            {"credential_key": self._credential_key},
            {
                "$set": {
                    "tokens": token_set.to_dict(),
                    "updated_at": now,
                },
                "$setOnInsert": {
                    "created_at": now,
                },
            },
            upsert=True,
        )

    def clear(self) -> None:
        self._collection.delete_one({"credential_key": self._credential_key})


def create_token_store(settings: Settings) -> TokenStore:
    return _create_token_store_cached(
        token_store=settings.token_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_tokens_collection=settings.mongodb_tokens_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_token_store_cached(
    *,
    token_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_tokens_collection: str,
    mongodb_connect_timeout_ms: int,
) -> TokenStore:
    if token_store == "mongodb":
        return MongoTokenStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_tokens_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryTokenStore()


def clear_token_store_cache() -> None:
    _create_token_store_cached.cache_clear()
