"""Cache and DRAM statistics and their plain-text report."""

from __future__ import annotations

import enum
import math
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional, TextIO


class AccessType(enum.IntEnum):
    LOAD = 0
    RFO = 1
    PREFETCH = 2
    WRITE = 3
    TRANSLATION = 4


@dataclass
class CacheStats:
    """Per-phase cache counters; hits and misses are indexed by access type, then cpu."""

    name: str = ""
    num_cpus: int = 1
    pf_requested: int = 0
    pf_issued: int = 0
    pf_useful: int = 0
    pf_useless: int = 0
    pf_fill: int = 0
    hits: Dict[AccessType, List[int]] = field(default_factory=dict)
    misses: Dict[AccessType, List[int]] = field(default_factory=dict)
    avg_miss_latency: float = 0.0
    total_miss_latency: int = 0

    def __post_init__(self) -> None:
        for table in (self.hits, self.misses):
            for access in AccessType:
                table.setdefault(access, [0] * self.num_cpus)


@dataclass
class DramChannelStats:
    name: str = ""
    dbus_cycle_congested: int = 0
    dbus_count_congested: int = 0
    wq_row_buffer_hit: int = 0
    wq_row_buffer_miss: int = 0
    rq_row_buffer_hit: int = 0
    rq_row_buffer_miss: int = 0
    wq_full: int = 0


class PlainPrinter:
    """Writes statistics as human-readable text."""

    def __init__(self, stream: Optional[TextIO] = None, num_cpus: int = 1) -> None:
        self.stream = stream if stream is not None else sys.stdout
        self.num_cpus = num_cpus

    def _write(self, text: str) -> None:
        self.stream.write(text)

    def print_cache(self, stats: CacheStats) -> None:
        name = stats.name
        for cpu in range(self.num_cpus):
            total_hit = sum(stats.hits[access][cpu] for access in AccessType)
            total_miss = sum(stats.misses[access][cpu] for access in AccessType)

            self._write(
                f"{name} TOTAL        ACCESS: {total_hit + total_miss:10d} "
                f"HIT: {total_hit:10d} MISS: {total_miss:10d}\n"
            )
            for access in AccessType:
                hit = stats.hits[access][cpu]
                miss = stats.misses[access][cpu]
                self._write(
                    f"{name} {access.name:<12s} ACCESS: {hit + miss:10d} HIT: {hit:10d} MISS: {miss:10d}\n"
                )

            self._write(
                f"{name} PREFETCH REQUESTED: {stats.pf_requested:10} ISSUED: {stats.pf_issued:10} "
                f"USEFUL: {stats.pf_useful:10} USELESS: {stats.pf_useless:10}\n"
            )
            self._write(f"{name} AVERAGE MISS LATENCY: {stats.avg_miss_latency:.4g} cycles\n")

    def print_dram(self, stats: DramChannelStats) -> None:
        self._write(
            f"\n{stats.name} RQ ROW_BUFFER_HIT: {stats.rq_row_buffer_hit:10}\n"
            f"  ROW_BUFFER_MISS: {stats.rq_row_buffer_miss:10}\n"
        )
        if stats.dbus_count_congested > 0:
            average = math.ceil(stats.dbus_cycle_congested) / math.ceil(stats.dbus_count_congested)
            self._write(f" AVG DBUS CONGESTED CYCLE: {average:.4g}\n")
        else:
            self._write(" AVG DBUS CONGESTED CYCLE: -\n")
        self._write(
            f"WQ ROW_BUFFER_HIT: {stats.wq_row_buffer_hit:10}\n"
            f"  ROW_BUFFER_MISS: {stats.wq_row_buffer_miss:10}\n"
            f"  FULL: {stats.wq_full:10}\n"
        )