"""Domain model dataclasses for the ``/debug/vars`` payload and scrape outcomes.

The upstream document is map-shaped and dynamic; ``ScrapeResult.from_raw``
turns it into typed records. Absent maps decode as empty and absent numeric
fields as zero, but a value of the wrong JSON type is a ``PayloadShapeError``.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from xray_bridge.utils.exceptions import InstanceFetchError


class PayloadShapeError(ValueError):
    """Decoded JSON does not have the expected structure."""


def _mapping(value: Any, where: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise PayloadShapeError(f"{where}: expected object, got {type(value).__name__}")
    return value


def _number(value: Any, where: str) -> float:
    if value is None:
        return 0.0
    # bool is an int subclass but never a valid counter value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PayloadShapeError(f"{where}: expected number, got {type(value).__name__}")
    return float(value)


@dataclass(frozen=True, slots=True)
class Instance:
    """One upstream proxy server: label value ``server`` and base URL ``host``."""

    server: str
    host: str

    @property
    def stats_url(self) -> str:
        return self.host.rstrip('/') + '/debug/vars'


@dataclass(frozen=True, slots=True)
class TrafficStat:
    downlink: float = 0.0
    uplink: float = 0.0

    @classmethod
    def from_raw(cls, data: Any, where: str) -> TrafficStat:
        m = _mapping(data, where)
        return cls(
            downlink=_number(m.get('downlink'), f"{where}.downlink"),
            uplink=_number(m.get('uplink'), f"{where}.uplink"),
        )


@dataclass(frozen=True, slots=True)
class ObservatoryProbe:
    delay: float = 0.0
    outbound_tag: str = ''

    @classmethod
    def from_raw(cls, key: str, data: Any) -> ObservatoryProbe:
        where = f"observatory.{key}"
        m = _mapping(data, where)
        tag = m.get('outbound_tag')
        if tag is not None and not isinstance(tag, str):
            raise PayloadShapeError(f"{where}.outbound_tag: expected string, got {type(tag).__name__}")
        return cls(
            delay=_number(m.get('delay'), f"{where}.delay"),
            outbound_tag=tag or key,
        )


@dataclass(slots=True)
class ScrapeResult:
    """Per-instance snapshot of one ``/debug/vars`` document."""

    inbound: dict[str, TrafficStat] = field(default_factory=dict)
    outbound: dict[str, TrafficStat] = field(default_factory=dict)
    observatory: dict[str, ObservatoryProbe] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, doc: Any) -> ScrapeResult:
        top = _mapping(doc, 'document')
        stats = _mapping(top.get('stats'), 'stats')
        inbound = _mapping(stats.get('inbound'), 'stats.inbound')
        outbound = _mapping(stats.get('outbound'), 'stats.outbound')
        observatory = _mapping(top.get('observatory'), 'observatory')
        return cls(
            inbound={tag: TrafficStat.from_raw(v, f"stats.inbound.{tag}") for tag, v in inbound.items()},
            outbound={tag: TrafficStat.from_raw(v, f"stats.outbound.{tag}") for tag, v in outbound.items()},
            observatory={key: ObservatoryProbe.from_raw(key, v) for key, v in observatory.items()},
        )


@dataclass(slots=True)
class FetchOutcome:
    """Tagged result of polling one instance: exactly one of result/error is set."""

    instance: Instance
    result: ScrapeResult | None = None
    error: InstanceFetchError | None = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None


__all__ = [
    "PayloadShapeError",
    "Instance",
    "TrafficStat",
    "ObservatoryProbe",
    "ScrapeResult",
    "FetchOutcome",
]
