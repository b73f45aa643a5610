"""Desired/current comparison.

Two flavours: registry-typed attribute maps, compared after coercion to
the declared type, and structured documents (ControllerRates,
AccountService sub-documents, network function settings) compared
recursively so only the differing leaves are submitted.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .registry import AttributeRegistry, coerce


def attribute_diff(
    desired: Mapping[str, Any],
    current: Mapping[str, Any],
    registry: AttributeRegistry,
) -> dict[str, Any]:
    """Return desired entries whose coerced value differs from the device.

    Every desired name must be declared by the registry. Attributes the
    device reads back as null (write-only passwords) are always included.

    Raises:
        UnknownAttribute: If a desired attribute is not in the registry.
        TypeCoercionError: If a desired or current value does not parse.
    """
    diff: dict[str, Any] = {}
    for name, value in desired.items():
        wanted = coerce(registry, name, value)
        have = current.get(name)
        if have is None or coerce(registry, name, have) != wanted:
            diff[name] = wanted
    return diff


def structural_diff(desired: Mapping[str, Any], current: Mapping[str, Any]) -> dict[str, Any]:
    """Return the parts of desired that differ from current.

    None in desired means "not managed" and is skipped. Nested mappings are
    compared key by key; lists and scalars are compared whole.
    """
    diff: dict[str, Any] = {}
    for key, wanted in desired.items():
        if wanted is None:
            continue
        have = current.get(key)
        if isinstance(wanted, Mapping) and isinstance(have, Mapping):
            nested = structural_diff(wanted, have)
            if nested:
                diff[key] = nested
        elif isinstance(wanted, Mapping):
            pruned = prune_none(wanted)
            if pruned:
                diff[key] = pruned
        elif wanted != have:
            diff[key] = wanted
    return diff


def prune_none(document: Mapping[str, Any]) -> dict[str, Any]:
    """Drop None values recursively."""
    pruned: dict[str, Any] = {}
    for key, value in document.items():
        if value is None:
            continue
        if isinstance(value, Mapping):
            nested = prune_none(value)
            if nested:
                pruned[key] = nested
        else:
            pruned[key] = value
    return pruned


def select(current: Mapping[str, Any], keys: Mapping[str, Any]) -> dict[str, Any]:
    """Project current onto the keys present in keys (recursively for mappings)."""
    view: dict[str, Any] = {}
    for key, shape in keys.items():
        if key not in current:
            continue
        value = current[key]
        if isinstance(shape, Mapping) and isinstance(value, Mapping):
            view[key] = select(value, shape)
        else:
            view[key] = value
    return view
