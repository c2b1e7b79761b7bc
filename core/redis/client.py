from redis.asyncio import Redis

from core.environment.config import Settings


def create_redis_client(settings: Settings) -> Redis:
    """
    Create Redis client from settings.

    Parameters
    ----------
    settings : Settings
        Application settings

    Returns
    -------
    Redis
        Redis client instance (not connected yet)
    """
    return Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password if settings.redis_password else None,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )


async def connect_redis(settings: Settings) -> Redis:
    """
    Create Redis client and check the connection.

    Parameters
    ----------
    settings : Settings
        Application settings

    Returns
    -------
    Redis
        Connected Redis client

    Raises
    ------
    ConnectionError
        If Redis does not answer the ping
    """
    redis_client = create_redis_client(settings)
    try:
        await redis_client.ping()
    except Exception as e:
        await redis_client.aclose()
        raise ConnectionError(f"Failed to connect to Redis: {e}")
    return redis_client
