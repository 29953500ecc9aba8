"""Property bag with change tracking.

``Model`` is the persistence base shared by node and relationship
wrappers: it stores the property snapshot, records which keys changed
since the last ``reset()`` and renders itself as a plain dict.
"""

from __future__ import annotations

from collections.abc import Iterable
from collections.abc import Mapping
from collections.abc import Sequence
from typing import Any

_MISSING = object()


class Model:
    """Property bag with dirty tracking."""

    def __init__(self, data: Mapping[str, Any] | None = None, **properties: Any) -> None:
        self._data: dict[str, Any] = {}
        self._changed: set[str] = set()
        self.set_properties({**dict(data or {}), **properties})

    # ----- properties -----

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def has(self, key: str) -> bool:
        return key in self._data

    def set(self, key: str, value: Any) -> None:
        current = self._data.get(key, _MISSING)
        self._data[key] = value
        if current is _MISSING or current != value:
            self._changed.add(key)

    def unset(self, key: str) -> None:
        if self._data.pop(key, _MISSING) is not _MISSING:
            self._changed.add(key)

    def set_properties(self, properties: Mapping[str, Any]) -> None:
        for key, value in properties.items():
            self.set(key, value)

    @property
    def data(self) -> dict[str, Any]:
        """Snapshot copy of the current properties."""
        return dict(self._data)

    # ----- change tracking -----

    @property
    def dirty(self) -> bool:
        return bool(self._changed)

    @property
    def changed(self) -> set[str]:
        return set(self._changed)

    def set_changed(self, key: str, value: bool = True) -> None:
        """Flag *key* as modified without touching its value."""
        if value:
            self._changed.add(key)
        else:
            self._changed.discard(key)

    def reset(self) -> None:
        self._changed.clear()

    # ----- attribute access -----

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        data = self.__dict__.get("_data")
        if data is not None and name in data:
            return data[name]
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or hasattr(type(self), name):
            object.__setattr__(self, name, value)
        else:
            self.set(name, value)

    # ----- rendering -----

    def _field_value(self, name: str) -> Any:
        return self.get(name)

    def to_dict(self, fields: Iterable[str] | Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Render as a dict, optionally restricted to *fields*.

        A mapping selects fields with ``True``, computes them with a
        callable taking the instance, or renders a nested model (or list
        of models) with a nested field selection.
        """
        if fields is None:
            return {key: _render(value, None) for key, value in self._data.items()}

        if not isinstance(fields, Mapping):
            fields = dict.fromkeys(fields, True)

        result: dict[str, Any] = {}
        for name, selection in fields.items():
            if selection is False or selection is None:
                continue
            if callable(selection):
                result[name] = selection(self)
                continue
            nested = None if selection is True else selection
            result[name] = _render(self._field_value(name), nested)
        return result

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._data!r}>"


def _render(value: Any, fields: Any) -> Any:
    if isinstance(value, Model):
        return value.to_dict(fields)
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return [_render(item, fields) for item in value]
    return value
