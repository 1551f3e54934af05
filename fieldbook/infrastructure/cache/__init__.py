from .redis_cache import CacheBackend, InMemoryCache, RedisCache

__all__ = ["CacheBackend", "InMemoryCache", "RedisCache"]
