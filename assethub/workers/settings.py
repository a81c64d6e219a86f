"""Arq worker settings."""

from arq.connections import RedisSettings

from assethub.config import get_settings

settings = get_settings()


def parse_redis_url(url: str) -> RedisSettings:
    """Parse Redis URL into RedisSettings."""
    # Simple parser for redis://[user:pass@]host[:port][/db]
    url = url.replace("redis://", "")
    if "@" in url:
        auth, hostport = url.rsplit("@", 1)
        if ":" in auth:
            _, password = auth.split(":", 1)
        else:
            password = auth
    else:
        hostport = url
        password = None

    hostport, _, db = hostport.partition("/")
    if ":" in hostport:
        host, port = hostport.split(":")
        port = int(port)
    else:
        host = hostport
        port = 6379

    return RedisSettings(
        host=host,
        port=port,
        password=password or None,
        database=int(db) if db else 0,
    )


redis_settings = parse_redis_url(settings.redis_url)
