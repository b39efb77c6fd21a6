"""Decoding of CPUID results for APIC id and logical processor count."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class CpuidRegs:
    """Registers returned by one CPUID query."""

    eax: int = 0
    ebx: int = 0
    ecx: int = 0
    edx: int = 0


CpuidFn = Callable[[int, int], CpuidRegs]


def initial_apic_id(cpuid: CpuidFn) -> int:
    """Legacy initial APIC id: leaf 1, EBX bits 31..24."""
    return (cpuid(1, 0).ebx >> 24) & 0xFF


def logical_processor_count(cpuid: CpuidFn) -> int:
    """Logical processors per package, falling back to 1."""
    max_leaf = cpuid(0, 0).eax
    if max_leaf >= 0x0B:
        return (cpuid(0x0B, 0).ebx & 0xFFFF) or 1
    if max_leaf >= 1:
        return ((cpuid(1, 0).ebx >> 16) & 0xFF) or 1
    return 1