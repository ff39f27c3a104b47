import os
import asyncio
from prometheus_client import Counter, Gauge, start_http_server
import logging

logger = logging.getLogger(__name__)

REDIS = None

FRIEND_REQUEST_EVENTS = Counter(
    'pairplay_friend_request_events_total',
    'Friend request state transitions',
    ['action', 'outcome'],
)
GAME_INVITE_EVENTS = Counter(
    'pairplay_game_invite_events_total',
    'Game invite state transitions',
    ['action', 'outcome'],
)
LIVE_SOCKETS = Gauge('pairplay_live_sockets', 'Open live websocket connections')


def init_metrics(port: int = None):
    """Initialize Prometheus metrics server"""
    port = port or int(os.getenv('METRICS_PORT', '8001'))
    try:
        start_http_server(port)
        logger.info(f"Prometheus metrics server started on port {port}")
    except Exception as e:
        logger.warning(f'Prometheus start failed: {e}')


def get_redis():
    return REDIS


async def redis_startup():
    """Start Redis connection with retries"""
    global REDIS

    import redis.asyncio as redis
    from redis.exceptions import ConnectionError, TimeoutError

    redis_url = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    max_retries = 3
    retry_delay = 3  # seconds

    for attempt in range(max_retries):
        try:
            logger.info(f"Attempting to connect to Redis: {redis_url} (attempt {attempt + 1}/{max_retries})")

            REDIS = redis.from_url(
                redis_url,
                decode_responses=True,
                max_connections=20,
                retry_on_timeout=True,
                retry_on_error=[ConnectionError, TimeoutError],
                health_check_interval=30,
                socket_connect_timeout=5,
                socket_timeout=5
            )

            # Test the connection
            await REDIS.ping()

            logger.info("Redis connected successfully")
            break

        except Exception as e:
            logger.warning(f'Redis startup attempt {attempt + 1} failed: {e}')
            if REDIS:
                try:
                    await REDIS.aclose()
                except Exception:
                    pass
                REDIS = None

            if attempt < max_retries - 1:
                logger.info(f"Retrying Redis connection in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
            else:
                logger.error("Failed to connect to Redis after all retries")


async def shutdown_connections():
    """Gracefully shutdown all connections"""
    global REDIS
    logger.info("Shutting down connections...")

    if REDIS:
        try:
            await REDIS.aclose()
            logger.info("Redis connection closed")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")
        REDIS = None

    from .models import engine
    try:
        await engine.dispose()
        logger.info("Database engine disposed")
    except Exception as e:
        logger.error(f"Error disposing database engine: {e}")
