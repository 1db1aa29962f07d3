"""
Capability Probe: locates the attach actuator in the host's module registry.

The host exposes its voice-join function under different shapes depending on
its version. Each known shape is an explicit ShapePredicate; predicates are
tried in a fixed priority order and the first one that extracts a callable
wins. New host shapes are supported by adding a predicate, not by touching
the reconciliation loop.

Behavioral Contract:
- discover() never raises; a missing actuator is a degraded state (None)
- The returned Actuator is resolved once and cached by the controller
- Actuator.attach() turns every host failure into ActuatorError
"""

import asyncio
import inspect
from typing import Any, Callable, List, Optional, Sequence

from loguru import logger

from presence_kernel.capability.registry import iter_modules, iter_values, read_field

# Top-level names, in priority order, under which hosts have exposed the join call.
ATTACH_FIELD_NAMES = (
    "selectVoiceChannel",
    "joinVoiceChannel",
    "transitionToVoiceChannel",
    "connectToVoiceChannel",
    "selectVoice",
    "joinChannel",
    "join",
)
DEFAULT_NAMESPACE_NAMES = ("selectVoiceChannel", "joinVoiceChannel")
PROTOTYPE_METHOD_NAME = "joinVoice"


class ActuatorError(Exception):
    """Raised when a single attach call fails."""

    def __init__(self, target: str, reason: str):
        super().__init__(f"attach({target}) failed: {reason}")
        self.target = target
        self.reason = reason


class Actuator:
    """
    Narrow capability wrapper around the discovered host function.
    The loop only ever calls attach(); it never re-inspects the host object.
    """

    def __init__(
        self,
        func: Callable,
        shape: str,
        module_id: Optional[str] = None,
        timeout_ms: int = 10_000,
    ):
        self._func = func
        self.shape = shape
        self.module_id = module_id
        self.timeout_ms = timeout_ms

    @property
    def name(self) -> str:
        return getattr(self._func, "__name__", None) or "(anonymous)"

    async def attach(self, target: str) -> None:
        """
        Attach to `target`. Raises ActuatorError on any failure.

        A synchronous host function is called inline on the event loop, the
        same thread the host's own stores live on. It must return promptly:
        timeout_ms only bounds awaitable results, and a blocking sync call
        stalls toggles and the timer until it returns.
        """
        try:
            result = self._func(target)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=self.timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            raise ActuatorError(target, f"timed out after {self.timeout_ms}ms")
        except ActuatorError:
            raise
        except Exception as e:
            raise ActuatorError(target, f"{type(e).__name__}: {e}") from e

        # Some host versions report failure by returning the error
        if isinstance(result, BaseException):
            raise ActuatorError(target, f"{type(result).__name__}: {result}")


class ShapePredicate:
    """One plausible way the actuator is exposed by a registry module."""

    def __init__(self, name: str, extract: Callable[[Any], Optional[Callable]]):
        self.name = name
        self._extract = extract

    def extract(self, module: Any) -> Optional[Callable]:
        """Return the callable this shape finds in `module`, or None. Never raises."""
        try:
            candidate = self._extract(module)
        except Exception as e:
            logger.debug(f"[PROBE] Shape {self.name} failed: {type(e).__name__}: {e}")
            return None
        return candidate if callable(candidate) else None

    def __repr__(self) -> str:
        return f"ShapePredicate({self.name!r})"


def field_shape(name: str) -> ShapePredicate:
    """Top-level field with a known name."""
    return ShapePredicate(f"field:{name}", lambda m: read_field(m, name))


def namespace_shape(name: str, namespace: str = "default") -> ShapePredicate:
    """Field nested under a namespace object (usually `default`)."""
    return ShapePredicate(
        f"{namespace}.{name}",
        lambda m: read_field(read_field(m, namespace), name),
    )


def prototype_shape(method: str, namespace: str = "default") -> ShapePredicate:
    """Method defined on a class exposed as `namespace`, bound to the class itself."""

    def _extract(module: Any) -> Optional[Callable]:
        cls = read_field(module, namespace)
        if not inspect.isclass(cls):
            return None
        raw = inspect.getattr_static(cls, method, None)
        if raw is None:
            return None
        if isinstance(raw, (staticmethod, classmethod)):
            return getattr(cls, method)
        if inspect.isfunction(raw):
            return raw.__get__(cls, type(cls))
        return None

    return ShapePredicate(f"{namespace}.prototype.{method}", _extract)


def implementation_text(func: Callable) -> str:
    """Source of `func` when available, else the identifiers its code object uses."""
    try:
        return inspect.getsource(func)
    except (OSError, TypeError):
        pass
    parts = [getattr(func, "__name__", "")]
    code = getattr(func, "__code__", None)
    if code is not None:
        parts.extend(code.co_names)
        parts.extend(code.co_varnames)
        parts.extend(c for c in code.co_consts if isinstance(c, str))
    return " ".join(parts)


def source_scan_shape(markers: Sequence[str]) -> ShapePredicate:
    """Any routine in the module whose implementation mentions every marker."""
    lowered = [m.lower() for m in markers]

    def _extract(module: Any) -> Optional[Callable]:
        if not lowered:
            return None
        for value in iter_values(module):
            if not inspect.isroutine(value):
                continue
            text = implementation_text(value).lower()
            if all(m in text for m in lowered):
                return value
        return None

    return ShapePredicate(f"source-scan:{'+'.join(markers)}", _extract)


def default_predicates(source_markers: Sequence[str] = ("channelId", "voice")) -> List[ShapePredicate]:
    """Known shapes in priority order."""
    predicates = [field_shape(name) for name in ATTACH_FIELD_NAMES]
    predicates.extend(namespace_shape(name) for name in DEFAULT_NAMESPACE_NAMES)
    predicates.append(prototype_shape(PROTOTYPE_METHOD_NAME))
    predicates.append(source_scan_shape(source_markers))
    return predicates


class CapabilityProbe:
    """Evaluates shape predicates against a registry."""

    def __init__(
        self,
        predicates: Optional[List[ShapePredicate]] = None,
        source_markers: Sequence[str] = ("channelId", "voice"),
        attach_timeout_ms: int = 10_000,
    ):
        self.predicates = predicates if predicates is not None else default_predicates(source_markers)
        self.attach_timeout_ms = attach_timeout_ms

    def discover(self, registry: Any) -> Optional[Actuator]:
        """
        Return the first usable actuator, or None.
        Predicates are the outer loop, so a higher-priority shape in any
        module beats a lower-priority shape in an earlier module.
        """
        modules = list(iter_modules(registry))
        for predicate in self.predicates:
            for module_id, module in modules:
                func = predicate.extract(module)
                if func is None:
                    continue
                actuator = Actuator(
                    func,
                    shape=predicate.name,
                    module_id=module_id,
                    timeout_ms=self.attach_timeout_ms,
                )
                logger.info(
                    f"[PROBE] Actuator found via {predicate.name} in module {module_id}: {actuator.name}"
                )
                return actuator

        logger.warning(
            f"[PROBE] No attach actuator found in {len(modules)} modules "
            f"({len(self.predicates)} shapes tried); reconciliation is degraded"
        )
        return None
