"""
Registry access helpers.

The host's module registry is owned by an external, versioned system. Entries
can be mappings, plain objects, classes or namespaces, and any attribute
access may raise. These helpers read it without ever propagating host errors.
"""

from collections.abc import Mapping
from typing import Any, Callable, Iterator, Optional, Tuple

from loguru import logger

_MISSING = object()


def read_field(obj: Any, name: str) -> Any:
    """Read `name` from a mapping or an object. Returns None when absent."""
    if obj is None:
        return None
    try:
        if isinstance(obj, Mapping):
            return obj.get(name)
        value = getattr(obj, name, _MISSING)
    except Exception as e:
        logger.debug(f"[REGISTRY] Reading {name!r} raised {type(e).__name__}: {e}")
        return None
    return None if value is _MISSING else value


def iter_modules(registry: Any) -> Iterator[Tuple[str, Any]]:
    """Yield (module_id, module) pairs in registry order."""
    if registry is None:
        return
    if isinstance(registry, Mapping):
        for key, module in list(registry.items()):
            yield str(key), module
        return
    for index, module in enumerate(list(registry)):
        yield str(index), module


def iter_values(module: Any) -> Iterator[Any]:
    """Yield every value a module exposes (mapping values or public attributes)."""
    if isinstance(module, Mapping):
        yield from list(module.values())
        return
    try:
        names = [n for n in vars(module) if not n.startswith("__")]
    except TypeError:
        names = [n for n in dir(module) if not n.startswith("__")]
    for name in names:
        value = read_field(module, name)
        if value is not None:
            yield value


def find_module(
    registry: Any, predicate: Callable[[Any], bool]
) -> Optional[Tuple[str, Any]]:
    """First module for which `predicate` holds. Predicate errors count as no match."""
    for module_id, module in iter_modules(registry):
        try:
            if predicate(module):
                return module_id, module
        except Exception as e:
            logger.debug(f"[REGISTRY] Predicate failed on module {module_id}: {e}")
    return None


def has_callable(*names: str) -> Callable[[Any], bool]:
    """Predicate: module exposes a callable under any of `names`."""

    def _check(module: Any) -> bool:
        return any(callable(read_field(module, n)) for n in names)

    return _check
