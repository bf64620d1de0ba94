"""
Shared fixtures: synthetic Go binaries and go.mod files.

Binaries are assembled byte by byte with the same build info layout the
Go linker emits, so no Go toolchain is needed to run the tests.
"""

import struct
from pathlib import Path

import pytest


BUILDINFO_MAGIC = b"\xff Go buildinf:"
START_SENTINEL = bytes.fromhex("3077af0c9274080241e1c107e6d618e6")
END_SENTINEL = bytes.fromhex("f932433186182072008242104116d8f2")

ELF_DATA_OFFSET = 0x80
ELF_VADDR = 0x500000
PF_R = 0x4
PF_W = 0x2
PF_X = 0x1


def uvarint(n: int) -> bytes:
    out = bytearray()
    while n >= 0x80:
        out.append((n & 0x7F) | 0x80)
        n >>= 7
    out.append(n)
    return bytes(out)


def modinfo_text(
    module_path: str,
    version: str,
    go_version: str = "go1.22.1",
    main_package: str | None = None,
    module_sum: str = "h1:Vq2Wm5v1Mr6gLbQdC8fK4gK6pq3r3P2q5b1Xkq0YJ6s=",
) -> str:
    """Module info as written by the Go 1.18+ linker."""
    lines = [
        f"go\t{go_version}",
        f"path\t{main_package or module_path}",
        f"mod\t{module_path}\t{version}\t{module_sum}",
        "dep\tgolang.org/x/mod\tv0.14.0\th1:QX4fJ0Rr5cPQCF7O9lh9Se4pmwfwskqZfq5moyldzic=",
        "build\t-buildmode=exe",
        "build\t-compiler=gc",
        "build\tCGO_ENABLED=0",
        'build\t-ldflags="-s -w"',
        "",
    ]
    return "\n".join(lines)


def framed(text: str) -> bytes:
    return START_SENTINEL + text.encode("utf-8") + END_SENTINEL


def inline_blob(go_version: str, modinfo: bytes) -> bytes:
    """Build info blob with inline (flag bit 2) string encoding."""
    version = go_version.encode("utf-8")
    return (
        BUILDINFO_MAGIC + bytes([8, 2]) + b"\x00" * 16
        + uvarint(len(version)) + version
        + uvarint(len(modinfo)) + modinfo
    )


def pointer_blob(go_version: str, modinfo: bytes, base: int = ELF_VADDR) -> bytes:
    """Pre-1.18 build info blob: pointers to Go string headers."""
    version = go_version.encode("utf-8")
    version_hdr, modinfo_hdr = base + 32, base + 48
    version_data = base + 64
    modinfo_data = version_data + len(version)
    return (
        BUILDINFO_MAGIC + bytes([8, 0]) + struct.pack("<QQ", version_hdr, modinfo_hdr)
        + struct.pack("<QQ", version_data, len(version))
        + struct.pack("<QQ", modinfo_data, len(modinfo))
        + version + modinfo
    )


def elf64(payload: bytes, flags: int = PF_R | PF_W) -> bytes:
    """Minimal little-endian ELF64 image with one PT_LOAD segment holding payload."""
    ident = b"\x7fELF" + bytes([2, 1, 1, 0]) + b"\x00" * 8
    header = struct.pack("<HHIQQQIHHHHHH", 2, 62, 1, 0, 64, 0, 0, 64, 56, 1, 64, 0, 0)
    phdr = struct.pack(
        "<IIQQQQQQ", 1, flags, ELF_DATA_OFFSET, ELF_VADDR, ELF_VADDR, len(payload), len(payload), 0x1000
    )
    image = ident + header + phdr
    image += b"\x00" * (ELF_DATA_OFFSET - len(image))
    return image + payload


# Non-ELF images share one layout: headers, a decoy build info blob at
# DECOY_OFFSET outside the data section, then the data section itself.
DECOY_OFFSET = 0x200
MACHO_VADDR = 0x100000000
MACHO_DATA_OFFSET = 0x1000
PE_IMAGE_BASE = 0x140000000
PE_DATA_RVA = 0x2000
PE_DATA_OFFSET = 0x600
XCOFF_DATA_VADDR = 0x110000000
XCOFF_DATA_OFFSET = 0x600


def decoy_blob() -> bytes:
    """A well-formed blob that must never be picked up."""
    modinfo = framed(modinfo_text("example.com/decoy", "v0.0.1", go_version="go1.0.0"))
    return inline_blob("go1.0.0", modinfo)


def _layout(headers: bytes, payload: bytes, data_offset: int, decoy: bool = True) -> bytes:
    assert len(headers) <= DECOY_OFFSET
    image = headers + b"\x00" * (DECOY_OFFSET - len(headers))
    if decoy:
        image += decoy_blob()
    assert len(image) <= data_offset
    return image + b"\x00" * (data_offset - len(image)) + payload


def macho64(payload: bytes, go_section: bool = True, decoy: bool = True) -> bytes:
    """Little-endian Mach-O with __TEXT and __DATA segments; payload starts __DATA."""
    text = struct.pack(
        "<II16sQQQQiiII", 0x19, 72, b"__TEXT", MACHO_VADDR, MACHO_DATA_OFFSET,
        0, MACHO_DATA_OFFSET, 5, 5, 0, 0,
    )
    nsects = 1 if go_section else 0
    data = struct.pack(
        "<II16sQQQQiiII", 0x19, 72 + 80 * nsects, b"__DATA", MACHO_VADDR + MACHO_DATA_OFFSET,
        len(payload), MACHO_DATA_OFFSET, len(payload), 3, 3, nsects, 0,
    )
    if go_section:
        data += struct.pack(
            "<16s16sQQIIIIIIII", b"__go_buildinfo", b"__DATA", MACHO_VADDR + MACHO_DATA_OFFSET,
            len(payload), MACHO_DATA_OFFSET, 4, 0, 0, 0, 0, 0, 0,
        )
    commands = text + data
    header = struct.pack("<IiiIIIII", 0xFEEDFACF, 0x01000007, 3, 2, 2, len(commands), 0, 0)
    return _layout(header + commands, payload, MACHO_DATA_OFFSET, decoy)


def fat_macho(thin: bytes, offset: int = 0x1000) -> bytes:
    """Universal binary wrapping one thin Mach-O image."""
    header = struct.pack(">II", 0xCAFEBABE, 1) + struct.pack(">iiIII", 0x01000007, 3, offset, len(thin), 12)
    return header + b"\x00" * (offset - len(header)) + thin


def pe64(payload: bytes, data_characteristics: int = 0xC0600040, decoy: bool = True) -> bytes:
    """PE32+ image with .text and .data sections; payload is the raw .data contents."""
    dos = b"MZ" + b"\x00" * 58 + struct.pack("<I", 0x40)
    optional = struct.pack("<H", 0x20B) + b"\x00" * 22 + struct.pack("<Q", PE_IMAGE_BASE)
    optional += b"\x00" * (240 - len(optional))
    coff = struct.pack("<HHIIIHH", 0x8664, 2, 0, 0, 0, len(optional), 0x22)
    text = struct.pack("<8sIIIIIIHHI", b".text", 0x400, 0x1000, 0x400, DECOY_OFFSET, 0, 0, 0, 0, 0x60000020)
    data = struct.pack(
        "<8sIIIIIIHHI", b".data", len(payload), PE_DATA_RVA, len(payload), PE_DATA_OFFSET,
        0, 0, 0, 0, data_characteristics,
    )
    headers = dos + b"PE\x00\x00" + coff + optional + text + data
    return _layout(headers, payload, PE_DATA_OFFSET, decoy)


def xcoff64(payload: bytes, decoy: bool = True) -> bytes:
    """64-bit XCOFF image with .text and .data sections."""
    header = struct.pack(">HHIQHHI", 0x01F7, 2, 0, 0, 0, 0x0002, 0)
    text = struct.pack(
        ">8sQQQQQQIIII", b".text", 0x100000000, 0x100000000, 0x400, DECOY_OFFSET, 0, 0, 0, 0, 0x20, 0,
    )
    data = struct.pack(
        ">8sQQQQQQIIII", b".data", XCOFF_DATA_VADDR, XCOFF_DATA_VADDR, len(payload), XCOFF_DATA_OFFSET,
        0, 0, 0, 0, 0x40, 0,
    )
    return _layout(header + text + data, payload, XCOFF_DATA_OFFSET, decoy)


def go_binary(
    module_path: str = "example.com/tool",
    version: str = "v1.2.0",
    go_version: str = "go1.22.1",
    **kwargs,
) -> bytes:
    """A Go 1.18+ style ELF binary with inline build info."""
    modinfo = framed(modinfo_text(module_path, version, go_version=go_version, **kwargs))
    return elf64(inline_blob(go_version, modinfo))


TOOL_MANIFEST = """\
module example.com/project

go 1.21

require (
\texample.com/tool v1.2.0
\tgolang.org/x/mod v0.14.0 // indirect
)
"""


@pytest.fixture
def write_binary(tmp_path):
    """Factory writing a synthetic Go binary and returning its path."""
    def _write(name: str = "tool", data: bytes | None = None, **kwargs) -> Path:
        path = tmp_path / "bin" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data if data is not None else go_binary(**kwargs))
        return path
    return _write


@pytest.fixture
def write_manifest(tmp_path):
    """Factory writing a go.mod and returning its path."""
    def _write(content: str = TOOL_MANIFEST, name: str = "go.mod") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path
    return _write
