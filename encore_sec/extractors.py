"""
Named-field accessors over a CallContext.

Audit extractors and ownership resolvers are assembled from these
instead of positional argument indexing. Every accessor accepts
``(call, result=None)`` so the same helper can serve as an audit
extractor (call + result) or an owner resolver (call only).

Paths may be dotted to reach nested mappings or attributes, e.g.
``from_body("target.userId")``.
"""

from typing import Any, Callable, Dict, Mapping, Optional

from .policy.context import CallContext

Extractor = Callable[..., Any]

_MISSING = object()


def lookup(source: Any, path: str, default: Any = None) -> Any:
    """Follow a dotted path through mappings and attributes"""
    current = source
    for part in path.split("."):
        if current is None:
            return default
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        else:
            current = getattr(current, part, _MISSING)
        if current is _MISSING:
            return default
    return current


def from_body(path: str, default: Any = None) -> Extractor:
    def extract(call: CallContext, result: Any = None) -> Any:
        return lookup(call.body, path, default)
    return extract


def from_params(path: str, default: Any = None) -> Extractor:
    def extract(call: CallContext, result: Any = None) -> Any:
        return lookup(call.params, path, default)
    return extract


def from_query(path: str, default: Any = None) -> Extractor:
    def extract(call: CallContext, result: Any = None) -> Any:
        return lookup(call.query, path, default)
    return extract


def from_result(path: str, default: Any = None) -> Extractor:
    def extract(call: CallContext, result: Any = None) -> Any:
        return lookup(result, path, default)
    return extract


def actor_id() -> Extractor:
    def extract(call: CallContext, result: Any = None) -> Optional[str]:
        return call.actor_id
    return extract


def first_of(*extractors: Extractor) -> Extractor:
    """First non-None value among several accessors"""
    def extract(call: CallContext, result: Any = None) -> Any:
        for extractor in extractors:
            value = extractor(call, result)
            if value is not None:
                return value
        return None
    return extract


def pick_body(*paths: str) -> Extractor:
    """Details extractor copying the named body fields that are present"""
    def extract(call: CallContext, result: Any = None) -> Dict[str, Any]:
        picked: Dict[str, Any] = {}
        for path in paths:
            value = lookup(call.body, path, _MISSING)
            if value is not _MISSING:
                picked[path] = value
        return picked
    return extract


def compose(**fields: Extractor) -> Extractor:
    """Details extractor building a mapping from named accessors"""
    def extract(call: CallContext, result: Any = None) -> Dict[str, Any]:
        return {name: extractor(call, result) for name, extractor in fields.items()}
    return extract


def query_params() -> Extractor:
    """Snapshot of every query parameter"""
    def extract(call: CallContext, result: Any = None) -> Dict[str, Any]:
        return dict(call.query)
    return extract


def constant(value: Any) -> Extractor:
    def extract(call: CallContext, result: Any = None) -> Any:
        return value
    return extract
