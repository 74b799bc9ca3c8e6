"""Virtual memory: page allocation and page-table entry placement."""

from __future__ import annotations

import warnings
from typing import Dict, Tuple

from memsim.bits import bitmask, lg2, splice_bits

LOG2_PAGE_SIZE = 12
PAGE_SIZE = 1 << LOG2_PAGE_SIZE
PTE_BYTES = 8
# reserve 1MB or one page of space
VMEM_RESERVE_CAPACITY = max(PAGE_SIZE, 1 << 20)


class PhysicalMemoryExhausted(RuntimeError):
    """Raised when no physical page is left to allocate."""


class VirtualMemory:
    """Maps virtual pages and page-table entries onto physical pages."""

    def __init__(self, pte_page_size: int, levels: int, minor_penalty: int, dram_size: int) -> None:
        if pte_page_size <= 1024:
            raise ValueError(f"page table page size must exceed 1024 bytes, got {pte_page_size}")
        if pte_page_size != 1 << lg2(pte_page_size):
            raise ValueError(f"page table page size must be a power of two, got {pte_page_size}")

        self.minor_fault_penalty = minor_penalty
        self.pt_levels = levels
        self.pte_page_size = pte_page_size

        self._next_ppage = VMEM_RESERVE_CAPACITY
        self._last_ppage = 1 << (LOG2_PAGE_SIZE + lg2(pte_page_size // PTE_BYTES) * levels)
        if self._last_ppage <= VMEM_RESERVE_CAPACITY:
            raise ValueError("virtual memory is no larger than the reserved region")
        self._next_pte_page = 0

        self._vpage_to_ppage: Dict[Tuple[int, int], int] = {}
        self._page_table: Dict[Tuple[int, int, int], int] = {}

        required_bits = lg2(self._last_ppage)
        if required_bits > 64:
            warnings.warn(f"virtual memory configuration would require {required_bits} bits of addressing.")
        if required_bits > lg2(dram_size):
            warnings.warn("physical memory size is smaller than virtual memory size.")

    def shamt(self, level: int) -> int:
        """Shift that selects the virtual address bits indexed at ``level``."""
        return LOG2_PAGE_SIZE + lg2(self.pte_page_size // PTE_BYTES) * (level - 1)

    def get_offset(self, vaddr: int, level: int) -> int:
        """Index of the entry for ``vaddr`` within its page-table page."""
        return (vaddr >> self.shamt(level)) & bitmask(lg2(self.pte_page_size // PTE_BYTES))

    def available_ppages(self) -> int:
        return (self._last_ppage - self._next_ppage) // PAGE_SIZE

    def _ppage_front(self) -> int:
        if self.available_ppages() <= 0:
            raise PhysicalMemoryExhausted("no physical pages remain")
        return self._next_ppage

    def _ppage_pop(self) -> None:
        self._next_ppage += PAGE_SIZE

    def va_to_pa(self, cpu: int, vaddr: int) -> Tuple[int, int]:
        """Translate ``vaddr``, returning the physical address and the fault penalty."""
        front = self._ppage_front()
        key = (cpu, vaddr >> LOG2_PAGE_SIZE)
        fault = key not in self._vpage_to_ppage
        if fault:
            self._vpage_to_ppage[key] = front
            self._ppage_pop()

        paddr = splice_bits(self._vpage_to_ppage[key], vaddr, LOG2_PAGE_SIZE)
        return paddr, (self.minor_fault_penalty if fault else 0)

    def get_pte_pa(self, cpu: int, vaddr: int, level: int) -> Tuple[int, int]:
        """Locate the page-table entry for ``vaddr`` at ``level``, with its fault penalty."""
        if self._next_pte_page == 0:
            self._next_pte_page = self._ppage_front()
            self._ppage_pop()

        key = (cpu, vaddr >> self.shamt(level), level)
        fault = key not in self._page_table
        if fault:
            self._page_table[key] = self._next_pte_page
            self._next_pte_page += self.pte_page_size
            if self._next_pte_page % PAGE_SIZE == 0:
                self._next_pte_page = self._ppage_front()
                self._ppage_pop()

        offset = self.get_offset(vaddr, level)
        paddr = splice_bits(self._page_table[key], offset * PTE_BYTES, lg2(self.pte_page_size))
        return paddr, (self.minor_fault_penalty if fault else 0)