import bz2
import gzip
import io
import itertools
import lzma

import pytest

from memsim.trace import (
    RECORD_SIZE,
    TraceInstruction,
    apply_branch_target,
    decode_instruction,
    get_tracereader,
    iter_instructions,
    open_trace,
)

TRACE = bytes(
    [
        # Instruction 0
        0x3A, 0x13, 0x00, 0x4C, 0x00, 0x00, 0x00, 0x00,
        0x00,
        0x00,
        0x00, 0x3B,
        0x00, 0x00, 0x00, 0x00,
    ]
    + [0x00] * 48
    + [
        # Instruction 1
        0x3A, 0x16, 0x00, 0x4C, 0x00, 0x00, 0x00, 0x00,
        0x00,
        0x00,
        0x00, 0x49,
        0x00, 0x00, 0x00, 0x00,
    ]
    + [0x00] * 48
    + [
        # Instruction 2
        0x3A, 0x1C, 0x00, 0x4C, 0x00, 0x00, 0x00, 0x00,
        0x00,
        0x00,
        0x00, 0x11,
        0x00, 0x06, 0x00, 0x00,
    ]
    + [0x00] * 16
    + [0xE8, 0x58, 0x37, 0xB2, 0x7F, 0xFE, 0x00, 0x00]
    + [0x00] * 24
)


def test_record_size_matches_format():
    packed = TraceInstruction(ip=0).pack()
    assert len(packed) == 64
    assert len(packed) == RECORD_SIZE
    assert len(TRACE) == 3 * RECORD_SIZE


def test_reads_byte_representation():
    instrs = list(iter_instructions(io.BytesIO(TRACE)))
    inst0, inst1 = instrs[0], instrs[1]
    assert inst0.ip == 0x4C00133A
    assert inst0.is_branch is False
    assert inst0.destination_registers == (59,)
    assert inst0.source_registers == ()
    assert inst0.destination_memory == ()
    assert inst0.source_memory == ()

    assert inst1.ip == 0x4C00163A
    assert inst1.is_branch is False
    assert inst1.destination_registers == (73,)
    assert inst1.source_registers == ()
    assert inst1.destination_memory == ()
    assert inst1.source_memory == ()


def test_third_instruction_has_memory_source():
    inst2 = decode_instruction(TRACE[2 * RECORD_SIZE:])
    assert inst2.ip == 0x4C001C3A
    assert inst2.destination_registers == (0x11,)
    assert inst2.source_registers == (0x06,)
    assert inst2.source_memory == (0xFE7FB23758E8,)


def test_decode_rejects_wrong_length():
    with pytest.raises(ValueError):
        decode_instruction(TRACE[:RECORD_SIZE - 1])


def test_pack_round_trip():
    instr = TraceInstruction(
        ip=0x1234,
        is_branch=True,
        branch_taken=True,
        destination_registers=(26, 6),
        source_registers=(1, 2, 3),
        destination_memory=(0xABC,),
        source_memory=(0x10, 0x20),
    )
    data = instr.pack()
    assert len(data) == RECORD_SIZE
    assert decode_instruction(data) == instr


def test_pack_of_decoded_reproduces_bytes():
    first = TRACE[:RECORD_SIZE]
    assert decode_instruction(first).pack()[:10] == first[:10]
    assert decode_instruction(decode_instruction(first).pack()) == decode_instruction(first)


def test_pack_rejects_too_many_sources():
    instr = TraceInstruction(ip=1, source_registers=(1, 2, 3, 4, 5))
    with pytest.raises(ValueError):
        instr.pack()


def test_apply_branch_target_taken():
    branch = TraceInstruction(ip=0x100, is_branch=True, branch_taken=True)
    target = TraceInstruction(ip=0x400)
    assert apply_branch_target(branch, target).branch_target == 0x400


@pytest.mark.parametrize("is_branch,taken", [(True, False), (False, False), (False, True)])
def test_apply_branch_target_not_taken(is_branch, taken):
    branch = TraceInstruction(ip=0x100, is_branch=is_branch, branch_taken=taken, branch_target=7)
    target = TraceInstruction(ip=0x400)
    assert apply_branch_target(branch, target).branch_target == 0


def test_iter_instructions_fills_branch_targets():
    records = [
        TraceInstruction(ip=0x10, is_branch=True, branch_taken=True),
        TraceInstruction(ip=0x80),
        TraceInstruction(ip=0x84, is_branch=True, branch_taken=False),
        TraceInstruction(ip=0x88),
    ]
    stream = io.BytesIO(b"".join(r.pack() for r in records))
    result = list(iter_instructions(stream))
    assert [r.ip for r in result] == [0x10, 0x80, 0x84, 0x88]
    assert [r.branch_target for r in result] == [0x80, 0, 0, 0]


def test_iter_instructions_ignores_partial_record():
    stream = io.BytesIO(TRACE + b"\x01\x02\x03")
    assert len(list(iter_instructions(stream))) == 3


@pytest.mark.parametrize(
    "suffix,opener",
    [("trace", open), ("trace.gz", gzip.open), ("trace.xz", lzma.open), ("trace.bz2", bz2.open)],
)
def test_open_trace_by_suffix(tmp_path, suffix, opener):
    path = tmp_path / suffix
    with opener(path, "wb") as f:
        f.write(TRACE)
    with open_trace(path) as stream:
        assert stream.read() == TRACE


def test_get_tracereader_reads_all(tmp_path):
    path = tmp_path / "trace.gz"
    with gzip.open(path, "wb") as f:
        f.write(TRACE)
    ips = [i.ip for i in get_tracereader(path)]
    assert ips == [0x4C00133A, 0x4C00163A, 0x4C001C3A]


def test_get_tracereader_repeats(tmp_path):
    path = tmp_path / "trace"
    path.write_bytes(TRACE)
    ips = [i.ip for i in itertools.islice(get_tracereader(path, repeat=True), 7)]
    assert ips == [0x4C00133A, 0x4C00163A, 0x4C001C3A] * 2 + [0x4C00133A]


def test_get_tracereader_repeat_on_empty_file_ends(tmp_path):
    path = tmp_path / "empty"
    path.write_bytes(b"")
    assert list(get_tracereader(path, repeat=True)) == []