from functools import wraps
from typing import Any, Callable

from pydantic import TypeAdapter

from taskstats.cache.layer import cache_layer


def async_cached(
    key_builder: Callable[..., str],
    l2_ttl: int | Callable[[], int] | None = None,
    response_type: Any = None,
):
    """
    Decorator for async functions. key_builder receives same args/kwargs.

    With ``response_type`` the result is stored as JSON-ready data and
    validated back into that type on every read, so callers always get
    the same type whether the value came from L1, L2 or the loader.

    Example:
      @async_cached(lambda user_id, **kw: f"analytics:{user_id}:overview",
                    response_type=OverviewMetrics)
      async def get_overview(user_id, db): ...
    """
    adapter = TypeAdapter(response_type) if response_type is not None else None

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(*args, **kwargs):
            key = key_builder(*args, **kwargs)

            # loader closure calls the original function
            async def loader():
                value = await fn(*args, **kwargs)
                if value is None:
                    return None
                if adapter is not None:
                    return adapter.dump_python(value, mode="json")
                if hasattr(value, "model_dump"):
                    return value.model_dump(mode="json")
                return value

            ttl = l2_ttl() if callable(l2_ttl) else l2_ttl
            raw = await cache_layer.get(key, loader=loader, l2_ttl=ttl)
            if raw is None or adapter is None:
                return raw
            return adapter.validate_python(raw)

        return wrapper

    return decorator


def async_cached_expire(*pattern_builders: Callable[..., str]):
    """
    Invalidate every key matching the built glob patterns once the wrapped
    write has completed.
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(*args, **kwargs):
            result = await fn(*args, **kwargs)
            for build in pattern_builders:
                await cache_layer.delete_pattern(build(*args, **kwargs))
            return result

        return wrapper

    return decorator
