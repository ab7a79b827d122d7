"""Name -> factory registry for server providers.

Factories take keyword arguments (credentials, base URLs, tuning) and return
a :class:`~vpsm.domain.provider.Provider`. Names are case-insensitive.
"""

import threading

_lock = threading.Lock()
_factories: dict = {}


def normalize_name(name: str) -> str:
    return (name or "").strip().lower()


def register(name: str, factory):
    """Register *factory* under *name*.

    Raises:
        ValueError: empty name, missing factory, or name already taken.
    """
    key = normalize_name(name)
    if not key:
        raise ValueError("providers: empty provider name")
    if factory is None:
        raise ValueError("providers: factory is required")
    with _lock:
        if key in _factories:
            raise ValueError(f"providers: provider {name!r} already registered")
        _factories[key] = factory


def get(name: str, **kwargs):
    """Build the provider registered under *name*.

    Raises:
        KeyError: no provider with that name.
    """
    key = normalize_name(name)
    with _lock:
        factory = _factories.get(key)
    if factory is None:
        known = ", ".join(names()) or "none"
        raise KeyError(f"unknown provider {name!r} (available: {known})")
    return factory(**kwargs)


def names() -> list[str]:
    with _lock:
        return sorted(_factories)


def reset():
    """Forget every registration. Tests only."""
    with _lock:
        _factories.clear()
