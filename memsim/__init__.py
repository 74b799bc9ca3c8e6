"""Components for a trace-driven memory hierarchy simulator: bit helpers, virtual memory, trace reading, cache configuration, statistics and a CVP-1 trace converter."""

__version__ = "0.1.0"

__all__ = ["bits", "vmem", "trace", "stats", "cache_config", "cvp"]