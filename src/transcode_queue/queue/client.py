"""Redis client construction.

One client per worker process, built from config and passed to every
component that needs it.
"""

from __future__ import annotations

import logging

import redis

from ..models import RedisConfig

logger = logging.getLogger(__name__)


def create_redis_client(cfg: RedisConfig, ping: bool = True) -> redis.Redis:
    """
    Build a redis-py client with string responses.

    The socket timeout must stay above the blocking claim timeout, otherwise
    BLMOVE would be cut off by the client before the server returns.
    """
    client = redis.Redis(
        host=cfg.host,
        port=cfg.port,
        db=cfg.db,
        password=cfg.password,
        decode_responses=True,
        socket_timeout=cfg.socket_timeout_s,
        socket_connect_timeout=5,
    )
    if ping:
        client.ping()
        logger.info("Redis connected: %s:%s db=%s", cfg.host, cfg.port, cfg.db)
    return client
