import functools


def singleton(func):
    """Cache the first result of a factory function.

    Later calls return that result regardless of their arguments.
    ``<factory>.reset()`` drops the cached instance.
    """
    cache = {}

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        if "instance" not in cache:
            cache["instance"] = func(*args, **kwargs)
        return cache["instance"]

    wrapper.reset = cache.clear
    return wrapper
