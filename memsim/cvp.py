"""Conversion of value-prediction contest traces into the binary trace format."""

from __future__ import annotations

import enum
import gzip
import io
import lzma
import os
import sys
from collections import Counter
from dataclasses import dataclass, replace
from typing import BinaryIO, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from memsim.bits import MASK64
from memsim.trace import NUM_INSTR_SOURCES, TraceInstruction

REG_STACK_POINTER = 6
REG_FLAGS = 25
REG_INSTRUCTION_POINTER = 26
REG_AX = 56

# The link register used by calls and returns.
LINK_REGISTER = 30

PAGE_SHIFT = 12
PAGE_OFFSET_MASK = (1 << PAGE_SHIFT) - 1
FIRST_REMAP_PAGE = 0x1000

_XZ_MAGIC = b"\xfd7zXZ\x00"
_GZIP_MAGIC = b"\x1f\x8b"

_DEST_PROGRESS_INTERVAL = 1_000_000
_PREPROCESS_DOT_INTERVAL = 10_000_000
_PREPROCESS_LINE_INTERVAL = 600_000_000


class CvpFormatError(ValueError):
    """Raised when a trace record is malformed or cannot be converted."""


class InstClass(enum.IntEnum):
    ALU = 0
    LOAD = 1
    STORE = 2
    COND_BRANCH = 3
    UNCOND_DIRECT_BRANCH = 4
    UNCOND_INDIRECT_BRANCH = 5
    FP = 6
    SLOW_ALU = 7
    UNDEF = 8

    @property
    def is_branch(self) -> bool:
        return self in _BRANCH_CLASSES


_BRANCH_CLASSES = frozenset(
    {InstClass.COND_BRANCH, InstClass.UNCOND_DIRECT_BRANCH, InstClass.UNCOND_INDIRECT_BRANCH}
)
_MEMORY_CLASSES = frozenset({InstClass.LOAD, InstClass.STORE})


class OpType(enum.IntEnum):
    OP = 2
    RET_UNCOND = 3
    JMP_DIRECT_UNCOND = 4
    JMP_INDIRECT_UNCOND = 5
    CALL_DIRECT_UNCOND = 6
    CALL_INDIRECT_UNCOND = 7
    RET_COND = 8
    JMP_DIRECT_COND = 9
    JMP_INDIRECT_COND = 10
    CALL_DIRECT_COND = 11
    CALL_INDIRECT_COND = 12
    ERROR = 13
    MAX = 14

    @property
    def label(self) -> str:
        return f"OPTYPE_{self.name}"


@dataclass(frozen=True)
class CvpRecord:
    """One record of the input trace.

    ``output_values`` holds one integer per output register, 64 or 128 bits wide.
    """

    pc: int
    inst_class: InstClass
    ea: int = 0
    access_size: int = 0
    taken: bool = False
    target: int = 0
    input_regs: Tuple[int, ...] = ()
    output_regs: Tuple[int, ...] = ()
    output_values: Tuple[int, ...] = ()

    @property
    def is_branch(self) -> bool:
        return self.inst_class.is_branch


def _read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise CvpFormatError(f"truncated record: missing {what}")
    return data


def _read_int(stream: BinaryIO, size: int, what: str) -> int:
    return int.from_bytes(_read_exact(stream, size, what), "little")


def _output_value_width(reg: int) -> int:
    if reg <= 31 or reg == 64:
        return 8
    if 32 <= reg < 64:
        return 16
    raise CvpFormatError(f"output register {reg} has no known value width")


def read_records(stream: BinaryIO) -> Iterator[CvpRecord]:
    """Yield records from a binary stream until it runs out."""
    while True:
        head = stream.read(8)
        if len(head) < 8:
            return
        pc = int.from_bytes(head, "little")

        class_byte = _read_int(stream, 1, "instruction class")
        try:
            inst_class = InstClass(class_byte)
        except ValueError:
            raise CvpFormatError(f"unknown instruction class {class_byte}") from None

        ea = access_size = target = 0
        taken = False
        if inst_class in _MEMORY_CLASSES:
            ea = _read_int(stream, 8, "effective address")
            access_size = _read_int(stream, 1, "access size")
        elif inst_class.is_branch:
            taken = bool(_read_int(stream, 1, "taken flag"))
            if taken:
                target = _read_int(stream, 8, "branch target")
            else:
                # a branch that is not taken falls through to the next instruction
                target = (pc + 4) & MASK64
                if inst_class is not InstClass.COND_BRANCH:
                    raise CvpFormatError(f"unconditional branch at {pc:#x} is not taken")

        num_inputs = _read_int(stream, 1, "input register count")
        input_regs = tuple(_read_exact(stream, num_inputs, "input register names"))
        num_outputs = _read_int(stream, 1, "output register count")
        output_regs = tuple(_read_exact(stream, num_outputs, "output register names"))
        output_values = tuple(
            _read_int(stream, _output_value_width(reg), "output register value") for reg in output_regs
        )

        yield CvpRecord(
            pc=pc,
            inst_class=inst_class,
            ea=ea,
            access_size=access_size,
            taken=taken,
            target=target,
            input_regs=input_regs,
            output_regs=output_regs,
            output_values=output_values,
        )


def _log(text: str) -> None:
    sys.stderr.write(text)
    sys.stderr.flush()


def open_trace_file(name: Union[str, os.PathLike]) -> BinaryIO:
    """Open a trace, choosing decompression by its magic number; ``-`` is standard input."""
    path = os.fspath(name)
    if path == "-":
        _log("reading from standard input\n")
        return sys.stdin.buffer

    with open(path, "rb") as probe:
        magic = probe.read(len(_XZ_MAGIC))
    if len(magic) < len(_XZ_MAGIC):
        raise CvpFormatError(f"{path}: too short to be a trace")

    if magic == _XZ_MAGIC:
        _log(f'opening xz file "{path}"\n')
        return lzma.open(path, "rb")
    if magic.startswith(_GZIP_MAGIC):
        _log(f'opening gz file "{path}"\n')
        return gzip.open(path, "rb")
    _log(f'opening file "{path}"\n')
    return open(path, "rb")


def classify_branch(record: CvpRecord) -> OpType:
    """Decide what kind of control transfer a record is; non-branches are ``OP``."""
    if not record.is_branch:
        return OpType.OP
    if record.inst_class is InstClass.COND_BRANCH:
        return OpType.JMP_DIRECT_COND
    if not record.target:
        raise CvpFormatError(f"unconditional branch at {record.pc:#x} has no target")

    indirect = record.inst_class is InstClass.UNCOND_INDIRECT_BRANCH
    if record.output_regs == (LINK_REGISTER,):
        op = OpType.CALL_INDIRECT_UNCOND if indirect else OpType.CALL_DIRECT_UNCOND
    else:
        op = OpType.JMP_INDIRECT_UNCOND if indirect else OpType.JMP_DIRECT_UNCOND
    if record.input_regs == (LINK_REGISTER,):
        op = OpType.RET_UNCOND
    return op


class PageRemapper:
    """Moves data addresses off pages that also hold code."""

    def __init__(self, code_pages: Iterable[int], data_pages: Iterable[int]) -> None:
        self.code_pages = frozenset(code_pages)
        self.data_pages = frozenset(data_pages)
        self.allocations = 0
        self._remapped: Dict[int, int] = {}
        self._bump_page = FIRST_REMAP_PAGE

    def _allocate(self) -> int:
        self.allocations += 1
        _log(f"[{self.allocations}]")
        page = self._bump_page
        while page in self.code_pages or page in self.data_pages:
            page += 1
        self._bump_page = page + 1
        return page

    def transform(self, address: int) -> int:
        """Return ``address``, relocated to a fresh page if its page holds code."""
        page = address >> PAGE_SHIFT
        new_page = page
        if page in self.code_pages:
            new_page = self._remapped.get(page)
            if new_page is None:
                new_page = self._allocate()
                self._remapped[page] = new_page
        return ((new_page << PAGE_SHIFT) | (address & PAGE_OFFSET_MASK)) & MASK64


# destination registers, source registers, whether "taken" comes from the record
_BRANCH_REGISTERS: Dict[OpType, Tuple[Tuple[int, ...], Tuple[int, ...], bool]] = {
    OpType.JMP_DIRECT_UNCOND: ((REG_INSTRUCTION_POINTER,), (), True),
    OpType.JMP_DIRECT_COND: ((REG_INSTRUCTION_POINTER,), (REG_INSTRUCTION_POINTER, REG_FLAGS), True),
    OpType.CALL_INDIRECT_UNCOND: (
        (REG_INSTRUCTION_POINTER, REG_STACK_POINTER),
        (REG_INSTRUCTION_POINTER, REG_STACK_POINTER, REG_AX),
        False,
    ),
    OpType.CALL_DIRECT_UNCOND: (
        (REG_INSTRUCTION_POINTER, REG_STACK_POINTER),
        (REG_INSTRUCTION_POINTER, REG_STACK_POINTER),
        False,
    ),
    OpType.JMP_INDIRECT_UNCOND: ((REG_INSTRUCTION_POINTER,), (REG_AX,), False),
    OpType.RET_UNCOND: ((REG_INSTRUCTION_POINTER, REG_STACK_POINTER), (REG_STACK_POINTER,), False),
}

_REGISTER_REMAP = {REG_INSTRUCTION_POINTER: 64, REG_STACK_POINTER: 65, REG_FLAGS: 66, 0: 67}


def _normalize(record: CvpRecord) -> CvpRecord:
    """Limit the inputs to what a record can hold and give every op an output."""
    return replace(
        record,
        input_regs=record.input_regs[:NUM_INSTR_SOURCES],
        output_regs=record.output_regs or (0,),
    )


def _nonzero(values: Iterable[int]) -> Tuple[int, ...]:
    return tuple(v for v in values if v)


def convert_record(record: CvpRecord, remapper: PageRemapper) -> Tuple[OpType, TraceInstruction]:
    """Convert one record, returning its op type and the instruction to write."""
    op = classify_branch(record)
    if record.is_branch:
        destinations, sources, taken_from_record = _BRANCH_REGISTERS[op]
        return op, TraceInstruction(
            ip=record.pc,
            is_branch=True,
            branch_taken=record.taken if taken_from_record else True,
            destination_registers=destinations,
            source_registers=sources,
        )

    if record.inst_class is InstClass.UNDEF:
        raise CvpFormatError(f"instruction at {record.pc:#x} has an undefined class")

    record = _normalize(record)
    destination = _REGISTER_REMAP.get(record.output_regs[0], record.output_regs[0])
    sources = tuple(_REGISTER_REMAP.get(reg, reg) for reg in record.input_regs)

    source_memory: Tuple[int, ...] = ()
    destination_memory: Tuple[int, ...] = ()
    if record.inst_class is InstClass.LOAD:
        source_memory = _nonzero([remapper.transform(record.ea)])
    elif record.inst_class is InstClass.STORE:
        destination_memory = _nonzero([remapper.transform(record.ea)])

    return op, TraceInstruction(
        ip=record.pc,
        destination_registers=(destination,),
        source_registers=sources,
        destination_memory=destination_memory,
        source_memory=source_memory,
    )


_CLASS_DESCRIPTIONS = {
    InstClass.ALU: "ALU",
    InstClass.FP: "FP",
    InstClass.SLOW_ALU: "SLOWALU",
}


def _describe(index: int, record: CvpRecord, op: OpType) -> str:
    parts = [f"{index} {record.pc:x} "]
    if op is OpType.OP:
        record = _normalize(record)
        if record.inst_class is InstClass.LOAD:
            parts.append(f"LOAD (0x{record.ea:x})")
        elif record.inst_class is InstClass.STORE:
            parts.append(f"STORE (0x{record.ea:x})")
        else:
            parts.append(_CLASS_DESCRIPTIONS.get(record.inst_class, ""))
        parts.extend(f" I{reg}" for reg in record.input_regs)
        parts.extend(f" O{reg}" for reg in record.output_regs)
    else:
        parts.append(f"{op.label} {record.target:x}")
    return "".join(parts)


def _record_source(name: str) -> Callable[[], Iterator[CvpRecord]]:
    """Return a function that reads the trace from the start each time it is called."""
    if name == "-":
        data = open_trace_file(name).read()
        return lambda: read_records(io.BytesIO(data))

    def records() -> Iterator[CvpRecord]:
        with open_trace_file(name) as stream:
            yield from read_records(stream)

    return records


def _find_pages(records: Iterator[CvpRecord]) -> Tuple[set, set]:
    _log("preprocessing to find code and data pages...\n")
    code_pages: set = set()
    data_pages: set = set()
    for count, record in enumerate(records, 1):
        code_pages.add(record.pc >> PAGE_SHIFT)
        if record.inst_class in _MEMORY_CLASSES:
            data_pages.add(record.ea >> PAGE_SHIFT)
        if count % _PREPROCESS_DOT_INTERVAL == 0:
            _log(".")
            if count % _PREPROCESS_LINE_INTERVAL == 0:
                _log("\n")
    _log(f"{len(code_pages)} code pages, {len(data_pages)} data pages\n")
    return code_pages, data_pages


def main(argv: Optional[List[str]] = None) -> int:
    """Convert a trace named on the command line (or standard input) to standard output."""
    args = sys.argv[1:] if argv is None else list(argv)
    verbose = False
    name = "-"
    for arg in args:
        if arg == "-v":
            verbose = True
        else:
            name = arg

    out = sys.stdout.buffer
    try:
        records = _record_source(name)
        remapper = PageRemapper(*_find_pages(records()))

        counts: Counter = Counter()
        count = 0
        previous_pc = 0
        for record in records():
            count += 1
            if count % _DEST_PROGRESS_INTERVAL == 0:
                _log(f"{count} instructions\n")
            if record.pc == previous_pc:
                _log("hmm, that's weird\n")
            previous_pc = record.pc

            op, instruction = convert_record(record, remapper)
            counts[op] += 1
            out.write(instruction.pack())
            if verbose:
                _log(_describe(counts.total() if hasattr(counts, "total") else sum(counts.values()), record, op) + "\n")
    except (OSError, CvpFormatError) as exc:
        _log(f"{exc}\n")
        return 1
    out.flush()

    # the final read that met the end of the trace counts too
    count += 1
    if count % _DEST_PROGRESS_INTERVAL == 0:
        _log(f"{count} instructions\n")
    if previous_pc == 0:
        _log("hmm, that's weird\n")

    _log(f"converted {count} instructions\n")
    for op in OpType:
        if op is OpType.MAX:
            continue
        if counts[op]:
            _log(f"{op.label} {counts[op]} {100 * counts[op] / count:f}%\n")
    return 0