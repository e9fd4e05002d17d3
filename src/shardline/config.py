from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Annotated, Any, Final

import msgspec
from msgspec import Meta, Struct

__all__: Sequence[str] = ("DEFAULT_GATEWAY_VERSION", "GatewayConfig")

DEFAULT_GATEWAY_VERSION: Final[int] = 10

_Seconds = Annotated[float, Meta(ge=0)]


class GatewayConfig(Struct, frozen=True, kw_only=True, forbid_unknown_fields=True):
    version: Annotated[int, Meta(ge=6)] = DEFAULT_GATEWAY_VERSION
    transport_compression: bool = False
    large_threshold: Annotated[int, Meta(ge=50, le=250)] = 50

    backoff_base: _Seconds = 1.0
    backoff_factor: Annotated[float, Meta(ge=1)] = 2.0
    backoff_max: _Seconds = 60.0
    backoff_jitter: Annotated[float, Meta(ge=0, le=1)] = 0.1

    max_resume_attempts: Annotated[int, Meta(ge=1)] = 3
    max_reconnect_attempts: Annotated[int, Meta(ge=1)] | None = None
    max_decode_errors: Annotated[int, Meta(ge=1)] = 5

    send_limit: Annotated[int, Meta(ge=1)] = 110
    send_period: _Seconds = 60.0
    identify_period: _Seconds = 5.0

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> GatewayConfig:
        try:
            return msgspec.convert(mapping, type=cls)
        except msgspec.ValidationError as exc:
            raise ValueError(f"invalid gateway config: {exc}") from exc
