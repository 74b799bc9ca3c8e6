"""Configuration of a cache level, assembled with a fluent builder."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple

from memsim.stats import AccessType


@dataclass(frozen=True)
class CacheParameters:
    """The fixed parameters of one cache level.

    ``pq_size`` of ``None`` means the internal prefetch queue is unbounded.
    ``pref_activate_mask`` has bit ``t`` set for each access type ``t`` that
    triggers the prefetcher.
    """

    name: str
    freq_scale: float
    num_set: int
    num_way: int
    mshr_size: int
    pq_size: Optional[int]
    hit_latency: int
    fill_latency: int
    offset_bits: int
    max_tag: int
    max_fill: int
    prefetch_as_load: bool
    match_offset_bits: bool
    virtual_prefetch: bool
    pref_activate_mask: int
    upper_levels: Tuple[Any, ...]
    lower_level: Any
    lower_translate: Any
    prefetcher: Optional[str]
    replacement: Optional[str]


def _non_negative(what: str, value: int) -> int:
    if value < 0:
        raise ValueError(f"{what} must not be negative, got {value}")
    return value


class CacheBuilder:
    """Collects cache parameters step by step; each setter returns the builder."""

    def __init__(self) -> None:
        self._name = ""
        self._freq_scale = 0.0
        self._sets = 0
        self._ways = 0
        self._pq_size: Optional[int] = None
        self._mshr_size = 0
        self._hit_latency = 0
        self._fill_latency = 0
        self._latency = 0
        self._max_tag = 0
        self._max_fill = 0
        self._offset_bits = 0
        self._prefetch_as_load = False
        self._wq_full_addr = False
        self._virtual_prefetch = False
        self._pref_activate_mask = 0
        self._upper_levels: Tuple[Any, ...] = ()
        self._lower_level: Any = None
        self._lower_translate: Any = None
        self._prefetcher: Optional[str] = None
        self._replacement: Optional[str] = None

    def name(self, value: str) -> "CacheBuilder":
        self._name = value
        return self

    def frequency(self, value: float) -> "CacheBuilder":
        self._freq_scale = value
        return self

    def sets(self, value: int) -> "CacheBuilder":
        self._sets = _non_negative("sets", value)
        return self

    def ways(self, value: int) -> "CacheBuilder":
        self._ways = _non_negative("ways", value)
        return self

    def pq_size(self, value: int) -> "CacheBuilder":
        self._pq_size = _non_negative("pq_size", value)
        return self

    def mshr_size(self, value: int) -> "CacheBuilder":
        self._mshr_size = _non_negative("mshr_size", value)
        return self

    def latency(self, value: int) -> "CacheBuilder":
        """Total latency; the hit latency is derived from it unless set directly."""
        self._latency = _non_negative("latency", value)
        return self

    def hit_latency(self, value: int) -> "CacheBuilder":
        self._hit_latency = _non_negative("hit_latency", value)
        return self

    def fill_latency(self, value: int) -> "CacheBuilder":
        self._fill_latency = _non_negative("fill_latency", value)
        return self

    def tag_bandwidth(self, value: int) -> "CacheBuilder":
        self._max_tag = _non_negative("tag_bandwidth", value)
        return self

    def fill_bandwidth(self, value: int) -> "CacheBuilder":
        self._max_fill = _non_negative("fill_bandwidth", value)
        return self

    def offset_bits(self, value: int) -> "CacheBuilder":
        self._offset_bits = _non_negative("offset_bits", value)
        return self

    def prefetch_as_load(self, enabled: bool = True) -> "CacheBuilder":
        self._prefetch_as_load = bool(enabled)
        return self

    def wq_checks_full_addr(self, enabled: bool = True) -> "CacheBuilder":
        self._wq_full_addr = bool(enabled)
        return self

    def virtual_prefetch(self, enabled: bool = True) -> "CacheBuilder":
        self._virtual_prefetch = bool(enabled)
        return self

    def prefetch_activate(self, *args: AccessType) -> "CacheBuilder":
        """Set exactly the access types that activate the prefetcher."""
        mask = 0
        for access in args:
            mask |= 1 << int(AccessType(access))
        self._pref_activate_mask = mask
        return self

    def prefetcher(self, name: str) -> "CacheBuilder":
        self._prefetcher = name
        return self

    def replacement(self, name: str) -> "CacheBuilder":
        self._replacement = name
        return self

    def upper_levels(self, channels: Iterable[Any]) -> "CacheBuilder":
        self._upper_levels = tuple(channels)
        return self

    def lower_level(self, channel: Any) -> "CacheBuilder":
        self._lower_level = channel
        return self

    def lower_translate(self, channel: Any) -> "CacheBuilder":
        self._lower_translate = channel
        return self

    def build(self) -> CacheParameters:
        """Produce the parameters, deriving the hit latency when it was not given."""
        if self._hit_latency > 0:
            hit_latency = self._hit_latency
        else:
            hit_latency = self._latency - self._fill_latency
            if hit_latency < 0:
                raise ValueError(
                    f"latency {self._latency} is smaller than fill latency {self._fill_latency}"
                )
        return CacheParameters(
            name=self._name,
            freq_scale=self._freq_scale,
            num_set=self._sets,
            num_way=self._ways,
            mshr_size=self._mshr_size,
            pq_size=self._pq_size,
            hit_latency=hit_latency,
            fill_latency=self._fill_latency,
            offset_bits=self._offset_bits,
            max_tag=self._max_tag,
            max_fill=self._max_fill,
            prefetch_as_load=self._prefetch_as_load,
            match_offset_bits=self._wq_full_addr,
            virtual_prefetch=self._virtual_prefetch,
            pref_activate_mask=self._pref_activate_mask,
            upper_levels=self._upper_levels,
            lower_level=self._lower_level,
            lower_translate=self._lower_translate,
            prefetcher=self._prefetcher,
            replacement=self._replacement,
        )