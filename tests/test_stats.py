import io
import re

from memsim.stats import AccessType, CacheStats, DramChannelStats, PlainPrinter

LINE = re.compile(r"^(\S+) (\S+)\s+ACCESS:\s+(\d+) HIT:\s+(\d+) MISS:\s+(\d+)$")


def _render_cache(stats, num_cpus=1):
    out = io.StringIO()
    PlainPrinter(out, num_cpus).print_cache(stats)
    return out.getvalue().splitlines()


def _render_dram(stats):
    out = io.StringIO()
    PlainPrinter(out).print_dram(stats)
    return out.getvalue()


def test_cache_stats_start_at_zero_for_every_type():
    stats = CacheStats(name="L1D", num_cpus=2)
    assert set(stats.hits) == set(AccessType)
    assert all(v == [0, 0] for v in stats.hits.values())
    assert all(v == [0, 0] for v in stats.misses.values())


def test_access_lines_follow_type_order():
    stats = CacheStats(name="L1D")
    lines = _render_cache(stats)
    kinds = [LINE.match(line).group(2) for line in lines if LINE.match(line)]
    assert kinds == ["TOTAL", "LOAD", "RFO", "PREFETCH", "WRITE", "TRANSLATION"]


def test_access_equals_hit_plus_miss():
    stats = CacheStats(name="L2C")
    stats.hits[AccessType.LOAD][0] = 3
    stats.misses[AccessType.LOAD][0] = 1
    stats.hits[AccessType.RFO][0] = 5
    stats.misses[AccessType.WRITE][0] = 2
    parsed = {}
    for line in _render_cache(stats):
        match = LINE.match(line)
        if match:
            access, hit, miss = (int(match.group(i)) for i in (3, 4, 5))
            assert access == hit + miss
            parsed[match.group(2)] = (hit, miss)
    assert parsed["LOAD"] == (3, 1)
    assert parsed["RFO"] == (5, 0)
    assert parsed["WRITE"] == (0, 2)
    total_hit = sum(h for k, (h, _) in parsed.items() if k != "TOTAL")
    total_miss = sum(m for k, (_, m) in parsed.items() if k != "TOTAL")
    assert parsed["TOTAL"] == (total_hit, total_miss)


def test_total_line_layout():
    stats = CacheStats(name="LLC")
    lines = _render_cache(stats)
    assert lines[0].startswith("LLC TOTAL        ACCESS: ")
    assert lines[1].startswith("LLC LOAD         ACCESS: ")


def test_prefetch_and_latency_lines():
    stats = CacheStats(name="L1D", pf_requested=7, pf_issued=6, pf_useful=4, pf_useless=2, avg_miss_latency=5.0)
    lines = _render_cache(stats)
    pf_line = next(line for line in lines if "PREFETCH REQUESTED" in line)
    numbers = [int(n) for n in re.findall(r"\d+", pf_line)]
    assert numbers[-4:] == [7, 6, 4, 2]
    assert lines[-1] == "L1D AVERAGE MISS LATENCY: 5 cycles"


def test_one_block_per_cpu():
    stats = CacheStats(name="L1D", num_cpus=2)
    stats.hits[AccessType.LOAD][1] = 9
    one = _render_cache(CacheStats(name="L1D"), num_cpus=1)
    two = _render_cache(stats, num_cpus=2)
    assert len(two) == 2 * len(one)
    second_block = two[len(one):]
    load = next(LINE.match(l) for l in second_block if LINE.match(l) and LINE.match(l).group(2) == "LOAD")
    assert int(load.group(4)) == 9


def test_dram_without_congestion():
    stats = DramChannelStats(name="DRAM", rq_row_buffer_hit=11, rq_row_buffer_miss=12)
    text = _render_dram(stats)
    assert text.startswith("\nDRAM RQ ROW_BUFFER_HIT: ")
    assert " AVG DBUS CONGESTED CYCLE: -\n" in text
    rq_values = [int(n) for n in re.findall(r"ROW_BUFFER_(?:HIT|MISS):\s+(\d+)", text)]
    assert rq_values[:2] == [11, 12]


def test_dram_with_congestion_and_wq():
    stats = DramChannelStats(
        name="DRAM",
        dbus_cycle_congested=10,
        dbus_count_congested=4,
        wq_row_buffer_hit=21,
        wq_row_buffer_miss=22,
        wq_full=23,
    )
    text = _render_dram(stats)
    assert " AVG DBUS CONGESTED CYCLE: 2.5\n" in text
    wq_part = text[text.index("WQ ROW_BUFFER_HIT"):]
    assert [int(n) for n in re.findall(r"\d+", wq_part)] == [21, 22, 23]
    assert wq_part.endswith("\n")