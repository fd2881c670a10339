"""Finding and reading the MultiProcessor configuration tables in memory."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from .layout import NCPU

# MP floating pointer structure.
_MP = struct.Struct("<4sIBBBBB3s")
# MP configuration table header.
_CONF = struct.Struct("<4sHBB20sIHHIHBB")
# Processor table entry.
_PROC = struct.Struct("<BBBB4sI8s")
# I/O APIC table entry.
_IOAPIC = struct.Struct("<BBBBI")

MPPROC = 0x00
MPBUS = 0x01
MPIOAPIC = 0x02
MPIOINTR = 0x03
MPLINTR = 0x04

_LOW_MEMORY = 0x100000
_MAX_TABLE = 1024


class MpError(Exception):
    """The machine's MP tables are missing or unusable."""


@dataclass
class MpConfiguration:
    """What the MP tables say about the machine."""

    cpus: list[int] = field(default_factory=list)  # local APIC id of each CPU
    ioapicid: int = 0
    lapic: int = 0  # address of the local APIC
    imcr: bool = False  # an IMCR is present and must mask external interrupts


def checksum(data) -> int:
    """Sum of the bytes modulo 256; a valid structure sums to 0."""
    return sum(bytes(data)) & 0xFF


def search_range(memory, addr: int, length: int) -> int | None:
    """Address of an MP floating pointer in ``length`` bytes at ``addr``."""
    if not 0 < addr < _LOW_MEMORY:
        return None
    end = min(addr + length, len(memory))
    for p in range(addr, end, _MP.size):
        chunk = bytes(memory[p:p + _MP.size])
        if len(chunk) < _MP.size:
            break
        if chunk[:4] == b"_MP_" and checksum(chunk) == 0:
            return p
    return None


def search(memory) -> int | None:
    """Look in the EBDA, or the last KB of base memory, then the BIOS ROM."""
    bda = bytes(memory[0x400:0x420]).ljust(0x20, b"\0")
    ebda = ((bda[0x0F] << 8) | bda[0x0E]) << 4
    if ebda:
        found = search_range(memory, ebda, 1024)
    else:
        base = ((bda[0x14] << 8) | bda[0x13]) * 1024
        found = search_range(memory, base - 1024, 1024)
    if found is not None:
        return found
    return search_range(memory, 0xF0000, 0x10000)


def read_config(memory) -> tuple[bytes, bool]:
    """Return the checked configuration table and whether an IMCR is present."""
    addr = search(memory)
    if addr is None:
        raise MpError("no MP floating pointer structure")
    _sig, physaddr, _len, _rev, _sum, _type, imcrp, _res = _MP.unpack(
        bytes(memory[addr:addr + _MP.size])
    )
    if physaddr == 0:
        raise MpError("MP floating pointer has no configuration table")
    header = bytes(memory[physaddr:physaddr + _CONF.size])
    if len(header) < _CONF.size or header[:4] != b"PCMP":
        raise MpError("bad configuration table signature")
    _sig, length, version, *_rest = _CONF.unpack(header)
    if version not in (1, 4):
        raise MpError(f"unsupported configuration table version {version}")
    if length < _CONF.size or length > _MAX_TABLE:
        raise MpError(f"configuration table length {length} out of range")
    table = bytes(memory[physaddr:physaddr + length])
    if len(table) < length:
        raise MpError("configuration table runs past the end of memory")
    if checksum(table) != 0:
        raise MpError("configuration table checksum mismatch")
    return table, bool(imcrp)


def _entry(layout: struct.Struct, table: bytes, p: int) -> tuple:
    if p + layout.size > len(table):
        raise MpError("truncated configuration table entry")
    return layout.unpack_from(table, p)


def parse(memory, max_cpus: int = NCPU) -> MpConfiguration:
    """Find the CPUs, the I/O APIC and the local APIC address."""
    table, imcr = read_config(memory)
    lapic = _CONF.unpack_from(table, 0)[8]
    if lapic == 0:
        raise MpError("Invalid LAPIC address")
    config = MpConfiguration(lapic=lapic, imcr=imcr)
    p = _CONF.size
    while p < len(table):
        kind = table[p]
        if kind == MPPROC:
            apicid = _entry(_PROC, table, p)[1]
            if len(config.cpus) < max_cpus:
                config.cpus.append(apicid)
            p += _PROC.size
        elif kind == MPIOAPIC:
            config.ioapicid = _entry(_IOAPIC, table, p)[1]
            p += _IOAPIC.size
        elif kind in (MPBUS, MPIOINTR, MPLINTR):
            p += 8
        else:
            raise MpError("Didn't find a suitable machine")
    return config