import struct

import pytest

from v6fs.mptable import (
    MpError,
    checksum,
    parse,
    read_config,
    search,
    search_range,
)

LAPIC = 0xFEE00000
CONF_ADDR = 0x9000


def _pointer(conf_addr, imcrp=0):
    raw = bytearray(struct.pack("<4sIBBBBB3s", b"_MP_", conf_addr, 1, 4, 0, 0, imcrp, b"\0\0\0"))
    raw[10] = (-sum(raw)) & 0xFF
    return bytes(raw)


def _config(entries, lapic=LAPIC, version=4, signature=b"PCMP", fix_sum=True):
    body = b"".join(entries)
    length = 44 + len(body)
    header = struct.pack(
        "<4sHBB20sIHHIHBB", signature, length, version, 0, b"TEST", 0, 0,
        len(entries), lapic, 0, 0, 0,
    )
    raw = bytearray(header + body)
    if fix_sum:
        raw[7] = (-sum(raw)) & 0xFF
    return bytes(raw)


def _proc(apicid):
    return struct.pack("<BBBB4sI8s", 0, apicid, 0x14, 0, b"\0" * 4, 0, b"\0" * 8)


def _ioapic(apicno):
    return struct.pack("<BBBBI", 2, apicno, 0x11, 1, 0xFEC00000)


def _bus():
    return struct.pack("<B7s", 1, b"ISA    ")


def _memory(entries=None, pointer_at=0xF0010, imcrp=0, **kwargs):
    mem = bytearray(0x100000)
    if entries is None:
        entries = [_proc(0), _proc(1), _bus(), _ioapic(2)]
    mem[pointer_at:pointer_at + 16] = _pointer(CONF_ADDR, imcrp)
    table = _config(entries, **kwargs)
    mem[CONF_ADDR:CONF_ADDR + len(table)] = table
    return mem


def test_checksum_invariant():
    data = b"some bytes to balance"
    fixed = data + bytes([(-checksum(data)) & 0xFF])
    assert checksum(fixed) == 0
    assert checksum(b"") == 0


def test_parse_full_table():
    config = parse(_memory(imcrp=0x80))
    assert config.cpus == [0, 1]
    assert config.ioapicid == 2
    assert config.lapic == LAPIC
    assert config.imcr is True


def test_parse_limits_cpus():
    entries = [_proc(i) for i in range(5)] + [_ioapic(7)]
    config = parse(_memory(entries), max_cpus=3)
    assert config.cpus == [0, 1, 2]
    assert config.ioapicid == 7
    assert config.imcr is False


def test_search_finds_pointer_in_bios_rom():
    mem = _memory(pointer_at=0xF0040)
    assert search(mem) == 0xF0040
    assert search_range(mem, 0xF0000, 0x10000) == 0xF0040


def test_search_uses_ebda():
    mem = _memory(pointer_at=0x9FC00)
    mem[0x40E:0x410] = (0x9FC0).to_bytes(2, "little")
    assert search(mem) == 0x9FC00
    assert parse(mem).cpus == [0, 1]


def test_search_uses_end_of_base_memory():
    mem = _memory(pointer_at=0x9FC00)
    mem[0x413:0x415] = (640).to_bytes(2, "little")
    assert search(mem) == 0x9FC00


def test_search_range_rejects_out_of_range_address():
    mem = _memory()
    assert search_range(mem, 0, 0x100) is None
    assert search_range(mem, 0x100000, 0x100) is None


def test_pointer_with_bad_checksum_is_ignored():
    mem = _memory()
    mem[0xF0010 + 10] ^= 0xFF
    assert search(mem) is None
    with pytest.raises(MpError):
        read_config(mem)


def test_read_config_returns_table():
    table, imcr = read_config(_memory())
    assert table[:4] == b"PCMP"
    assert checksum(table) == 0
    assert imcr is False


def test_bad_signature():
    with pytest.raises(MpError):
        parse(_memory(signature=b"XXXX"))


def test_bad_version():
    with pytest.raises(MpError):
        parse(_memory(version=2))


def test_bad_table_checksum():
    with pytest.raises(MpError):
        parse(_memory(fix_sum=False, entries=[_proc(0), _proc(3)]))


def test_zero_lapic_address():
    with pytest.raises(MpError, match="LAPIC"):
        parse(_memory(lapic=0))


def test_unknown_entry_type():
    with pytest.raises(MpError, match="suitable machine"):
        parse(_memory(entries=[_proc(0), struct.pack("<B7s", 9, b"\0" * 7)]))


def test_no_pointer_at_all():
    with pytest.raises(MpError):
        parse(bytearray(0x100000))