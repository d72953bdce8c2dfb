"""Deep merge of configuration trees (maps, lists and scalars)."""

import copy
from typing import Any, Dict, List, Optional, Sequence, Tuple

# Keys that identify a list element across base and override lists
DEFAULT_IDENTITY_KEYS: Tuple[str, ...] = ("id", "Id", "ID", "guid", "Guid")

_MISSING = object()


def deep_merge(
    base: Any,
    override: Any,
    identity_keys: Sequence[str] = DEFAULT_IDENTITY_KEYS,
) -> Any:
    """Merge ``override`` on top of ``base`` and return a new tree.

    Rules:
        - map + map: keys only in the override are added, keys in both are merged recursively
        - list + list: merged by element identity (see ``merge_lists``)
        - anything else (scalar conflicts, type mismatches): the override wins

    Neither input is mutated; both are deep-copied before merging.

    Args:
        base: Base value (usually the built-in definition)
        override: Override value (usually the user-level definition)
        identity_keys: Keys used to match map elements inside lists

    Returns:
        The merged value
    """
    return _merge(copy.deepcopy(base), copy.deepcopy(override), tuple(identity_keys))


def merge_lists(
    base: List[Any],
    override: List[Any],
    identity_keys: Sequence[str] = DEFAULT_IDENTITY_KEYS,
) -> List[Any]:
    """Merge two lists by element identity.

    Elements that are maps carrying one of ``identity_keys`` are matched by that
    key's value; scalar elements are matched by equality. A matched override
    element replaces the base element wholesale, in the base element's position.
    Base elements come first, followed by override-only elements in their order.

    Args:
        base: Base list
        override: Override list
        identity_keys: Keys used to match map elements

    Returns:
        A new merged list
    """
    return _merge_lists(copy.deepcopy(base), copy.deepcopy(override), tuple(identity_keys))


def _merge(base: Any, override: Any, identity_keys: Tuple[str, ...]) -> Any:
    if isinstance(base, dict) and isinstance(override, dict):
        return _merge_dicts(base, override, identity_keys)
    if isinstance(base, list) and isinstance(override, list):
        return _merge_lists(base, override, identity_keys)
    return override


def _merge_dicts(base: Dict[str, Any], override: Dict[str, Any], identity_keys: Tuple[str, ...]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if key in result:
            result[key] = _merge(result[key], value, identity_keys)
        else:
            result[key] = value
    return result


def _merge_lists(base: List[Any], override: List[Any], identity_keys: Tuple[str, ...]) -> List[Any]:
    result = list(base)
    positions: Dict[Any, int] = {}
    for index, element in enumerate(result):
        identity = element_identity(element, identity_keys)
        if identity is not None and identity not in positions:
            positions[identity] = index

    for element in override:
        identity = element_identity(element, identity_keys)
        if identity is not None and identity in positions:
            # Whole-element replace, no per-field merge
            result[positions[identity]] = element
            continue
        if identity is None and element in result:
            continue
        if identity is not None:
            positions[identity] = len(result)
        result.append(element)
    return result


def element_identity(element: Any, identity_keys: Sequence[str] = DEFAULT_IDENTITY_KEYS) -> Optional[Tuple[str, Any]]:
    """Return the identity of a list element, or None when it has none.

    Map elements are identified by the first identity key they carry; hashable
    scalars are identified by their value.
    """
    if isinstance(element, dict):
        for key in identity_keys:
            value = element.get(key, _MISSING)
            if value is _MISSING:
                continue
            try:
                hash(value)
            except TypeError:
                return None
            return (key, value)
        return None
    if isinstance(element, (list, set)):
        return None
    try:
        hash(element)
    except TypeError:
        return None
    return ("__value__", element)
