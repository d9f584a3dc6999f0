from __future__ import annotations

from collections.abc import Generator
from functools import lru_cache

import redis

from solo_rpg.agents.base import GameServices
from solo_rpg.agents.factory import create_default_services
from solo_rpg.config import GameSettings, settings_from_env
from solo_rpg.infra.redis_client import create_redis
from solo_rpg.sessions import SessionRegistry, registry


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        client.close()


@lru_cache(maxsize=1)
def get_settings() -> GameSettings:
    return settings_from_env()


@lru_cache(maxsize=1)
def get_services() -> GameServices:
    return create_default_services()


def get_registry() -> SessionRegistry:
    return registry
