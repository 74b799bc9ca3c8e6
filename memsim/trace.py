"""Reading instruction traces in the fixed-size binary record format."""

from __future__ import annotations

import bz2
import gzip
import lzma
import os
import struct
from dataclasses import dataclass, replace
from functools import partial
from typing import BinaryIO, Iterable, Iterator, Tuple, Union

NUM_INSTR_DESTINATIONS = 2
NUM_INSTR_SOURCES = 4

# ip, is_branch, branch_taken, destination registers, source registers,
# destination memory, source memory
_RECORD = struct.Struct(
    f"<QBB{NUM_INSTR_DESTINATIONS}B{NUM_INSTR_SOURCES}B{NUM_INSTR_DESTINATIONS}Q{NUM_INSTR_SOURCES}Q"
)
RECORD_SIZE = _RECORD.size


def _nonzero(values: Iterable[int]) -> Tuple[int, ...]:
    return tuple(v for v in values if v != 0)


def _padded(values: Tuple[int, ...], length: int, what: str) -> Tuple[int, ...]:
    if len(values) > length:
        raise ValueError(f"too many {what}: {len(values)} given, at most {length} allowed")
    return tuple(values) + (0,) * (length - len(values))


@dataclass(frozen=True)
class TraceInstruction:
    """One traced instruction; register and memory lists hold only non-zero entries."""

    ip: int
    is_branch: bool = False
    branch_taken: bool = False
    destination_registers: Tuple[int, ...] = ()
    source_registers: Tuple[int, ...] = ()
    destination_memory: Tuple[int, ...] = ()
    source_memory: Tuple[int, ...] = ()
    branch_target: int = 0

    def pack(self) -> bytes:
        """Encode as one binary trace record."""
        return _RECORD.pack(
            self.ip,
            int(self.is_branch),
            int(self.branch_taken),
            *_padded(self.destination_registers, NUM_INSTR_DESTINATIONS, "destination registers"),
            *_padded(self.source_registers, NUM_INSTR_SOURCES, "source registers"),
            *_padded(self.destination_memory, NUM_INSTR_DESTINATIONS, "destination memory addresses"),
            *_padded(self.source_memory, NUM_INSTR_SOURCES, "source memory addresses"),
        )


def decode_instruction(data: bytes) -> TraceInstruction:
    """Decode one binary trace record."""
    if len(data) != RECORD_SIZE:
        raise ValueError(f"a trace record is {RECORD_SIZE} bytes, got {len(data)}")
    ip, is_branch, taken, *rest = _RECORD.unpack(data)
    dregs_end = NUM_INSTR_DESTINATIONS
    sregs_end = dregs_end + NUM_INSTR_SOURCES
    dmem_end = sregs_end + NUM_INSTR_DESTINATIONS
    return TraceInstruction(
        ip=ip,
        is_branch=bool(is_branch),
        branch_taken=bool(taken),
        destination_registers=_nonzero(rest[:dregs_end]),
        source_registers=_nonzero(rest[dregs_end:sregs_end]),
        destination_memory=_nonzero(rest[sregs_end:dmem_end]),
        source_memory=_nonzero(rest[dmem_end:]),
    )


def apply_branch_target(branch: TraceInstruction, target: TraceInstruction) -> TraceInstruction:
    """Record the following instruction's ip as the target of a taken branch."""
    taken = branch.is_branch and branch.branch_taken
    return replace(branch, branch_target=target.ip if taken else 0)


def open_trace(fname: Union[str, os.PathLike]) -> BinaryIO:
    """Open a trace file, decompressing according to its suffix."""
    name = os.fspath(fname)
    if name.endswith("gz"):
        return gzip.open(name, "rb")
    if name.endswith("xz"):
        return lzma.open(name, "rb")
    if name.endswith("bz2"):
        return bz2.open(name, "rb")
    return open(name, "rb")


def iter_instructions(stream: BinaryIO) -> Iterator[TraceInstruction]:
    """Yield instructions from a binary stream, filling in branch targets.

    A trailing partial record is ignored.
    """
    previous = None
    for chunk in iter(partial(stream.read, RECORD_SIZE), b""):
        if len(chunk) < RECORD_SIZE:
            break
        current = decode_instruction(chunk)
        if previous is not None:
            yield apply_branch_target(previous, current)
        previous = current
    if previous is not None:
        yield previous


def get_tracereader(fname: Union[str, os.PathLike], repeat: bool = False) -> Iterator[TraceInstruction]:
    """Yield the instructions of a trace file, starting over at its end if ``repeat``."""
    while True:
        produced = False
        with open_trace(fname) as stream:
            for instr in iter_instructions(stream):
                produced = True
                yield instr
        if not repeat or not produced:
            return