from __future__ import annotations

import logging
import typing
from collections.abc import Mapping, Sequence
from typing import Any, Generic, TypeVar

import msgspec
from msgspec import Struct

from shardline.errors import DecodeError
from shardline.events import DEFAULT_CATALOG

__all__: Sequence[str] = ("Dispatch", "DispatchRouter", "UnknownEvent")

_T = TypeVar("_T")


class Dispatch(Struct, Generic[_T], frozen=True):
    name: str
    data: _T


class UnknownEvent(Struct, frozen=True):
    name: str
    data: Any


@typing.final
class DispatchRouter:
    _logger: logging.Logger = logging.getLogger("shardline.router")

    def __init__(self, catalog: Mapping[str, type[Any]] | None = None, *, logger: logging.Logger | None = None) -> None:
        self.catalog: Mapping[str, type[Any]] = DEFAULT_CATALOG if catalog is None else catalog
        if logger is not None:
            self._logger = logger

    def __contains__(self, name: object) -> bool:
        return name in self.catalog

    def route(self, name: str, data: Any) -> Dispatch[Any] | UnknownEvent:
        payload_type = self.catalog.get(name)
        if payload_type is None:
            self._logger.warning("unknown dispatch event [t:%s], ignoring", name)
            return UnknownEvent(name=name, data=data)

        try:
            payload = msgspec.convert({} if data is None else data, type=payload_type, strict=False)
        except msgspec.ValidationError as exc:
            raise DecodeError(f"invalid payload for [t:{name}]: {exc}") from exc
        return Dispatch(name=name, data=payload)
