# memsim

Components for a trace-driven simulator of a processor's memory hierarchy.

## What is inside

- `memsim.bits`: `lg2`, `bitmask` and `splice_bits` for 64-bit address
  arithmetic.
- `memsim.vmem`: `VirtualMemory`, which hands out physical pages for virtual
  pages (`va_to_pa`) and for page-table entries (`get_pte_pa`). Both return
  the physical address with the minor-fault penalty, which is zero when the
  mapping already existed. `shamt`, `get_offset` and `available_ppages`
  expose the page-table geometry. `PhysicalMemoryExhausted` is raised when
  no physical page is left.
- `memsim.trace`: `TraceInstruction` records in the fixed-size binary trace
  format, with `pack`, `decode_instruction`, `apply_branch_target`,
  `iter_instructions`, `open_trace` and `get_tracereader`. `open_trace`
  decompresses files whose names end in `gz`, `xz` or `bz2`.
  `get_tracereader(fname, repeat=True)` starts the file over when it reaches
  the end.
- `memsim.stats`: `AccessType`, `CacheStats` and `DramChannelStats`, and a
  `PlainPrinter` whose `print_cache` and `print_dram` write the plain-text
  statistics report.
- `memsim.cache_config`: `CacheBuilder`, a fluent builder whose `build()`
  returns a frozen `CacheParameters`. When no hit latency is set, it is
  derived as `latency - fill_latency`.
- `memsim.cvp`: a converter from CVP-1 value-prediction traces to the binary
  trace format. It provides `read_records`, `classify_branch`,
  `PageRemapper`, `convert_record` and the `cvp2memsim` command.

## Installation

```
pip install .
```

## Example

```python
import io

from memsim.stats import AccessType, CacheStats, PlainPrinter
from memsim.trace import TraceInstruction, decode_instruction
from memsim.vmem import VirtualMemory

vmem = VirtualMemory(1 << 12, 4, 200, 1 << 48)
paddr, penalty = vmem.va_to_pa(0, 0xDEADBEEF)   # first touch: penalty == 200
paddr, penalty = vmem.va_to_pa(0, 0xDEADBEEF)   # already mapped: penalty == 0

instr = TraceInstruction(ip=0x4C00133A, destination_registers=(59,))
assert decode_instruction(instr.pack()) == instr

stats = CacheStats(name="L1D")
stats.hits[AccessType.LOAD][0] = 10
out = io.StringIO()
PlainPrinter(out).print_cache(stats)
```

## Converting CVP-1 traces

```
cvp2memsim trace.gz > converted.trace
cvp2memsim -v trace.xz > converted.trace
```

The converter detects xz and gzip input by its magic number and reads any
other file as uncompressed. With no file name, or with `-`, it reads standard
input. It reads the trace twice: once to find the code and data pages, so
that data addresses on code pages can be moved to fresh pages, and once to
convert. Converted records go to standard output; progress, the per-record
listing with `-v`, and the branch-type counts go to standard error. A
malformed trace or an unreadable file ends the command with exit status 1.

## What this package does not do

It holds the parts around a simulator, not a simulator: there is no engine
that runs caches, cores, a page table walker or DRAM cycle by cycle.
`CacheParameters` only records a configuration, and `CacheStats` and
`DramChannelStats` are filled in by the caller. There is no command that runs
a simulation; the only command is `cvp2memsim`.

## Tests

```
pip install .[test]
pytest
```