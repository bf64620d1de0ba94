"""
Build provenance extraction from Go binaries.

Reads the build info blob the Go linker embeds in every executable
(runtime.buildVersion and runtime.modinfo) without running the binary.
Each supported format (ELF, Mach-O, PE, XCOFF) is parsed far enough to
find its data section; the blob header is searched for only in the first
64 KiB of that section, so stray magic strings elsewhere in the file are
never mistaken for build info.
"""

from __future__ import annotations

import json
import os
import struct
from dataclasses import dataclass
from typing import Any

from .common import vlog
from .errors import ArtifactUnreadable


BUILDINFO_MAGIC = b"\xff Go buildinf:"
BUILDINFO_ALIGN = 16
BUILDINFO_HEADER_SIZE = 32
# The linker places the blob near the start of the data section
SEARCH_WINDOW = 64 * 1024

FLAG_BIG_ENDIAN = 0x1
FLAG_VERSION_INLINE = 0x2

# Module info is framed by two 16-byte sentinels
MODINFO_SENTINEL_SIZE = 16

ELF_MAGIC = b"\x7fELF"
MACHO_FAT_MAGIC = b"\xca\xfe\xba\xbe"
MACHO_MAGICS = (
    b"\xfe\xed\xfa\xce",  # 32-bit big endian
    b"\xfe\xed\xfa\xcf",  # 64-bit big endian
    b"\xce\xfa\xed\xfe",  # 32-bit little endian
    b"\xcf\xfa\xed\xfe",  # 64-bit little endian
    MACHO_FAT_MAGIC,      # universal
)
PE_MAGIC = b"MZ"
XCOFF_MAGICS = (b"\x01\xdf", b"\x01\xf7")
XCOFF64_MAGIC = 0x01F7

# ELF program headers
PT_LOAD = 1
PF_X = 0x1
PF_W = 0x2

# Mach-O load commands
LC_SEGMENT = 0x1
LC_SEGMENT_64 = 0x19
VM_PROT_READ_WRITE = 0x3

# PE section characteristics
IMAGE_SCN_CNT_INITIALIZED_DATA = 0x00000040
IMAGE_SCN_ALIGN_32BYTES = 0x00600000
IMAGE_SCN_MEM_READ = 0x40000000
IMAGE_SCN_MEM_WRITE = 0x80000000
PE_DATA_SECTION = IMAGE_SCN_CNT_INITIALIZED_DATA | IMAGE_SCN_MEM_READ | IMAGE_SCN_MEM_WRITE
PE32_MAGIC = 0x10B
PE32_PLUS_MAGIC = 0x20B

# XCOFF section types
STYP_DATA = 0x40


class Missing:
    """Marker for a binary that does not exist at the inspected path."""

    _instance: "Missing | None" = None

    def __new__(cls) -> "Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"


MISSING = Missing()


@dataclass(frozen=True)
class ArtifactMetadata:
    """
    Provenance embedded in a Go binary at build time.

    Attributes:
        declared_module_path: Path of the main module (e.g. "golang.org/x/tools")
        declared_module_version: Main module version ("v0.14.0", pseudo-version or "(devel)")
        built_with_toolchain_version: Go toolchain that built the binary (e.g. "go1.21.3")
        main_package_path: Import path of the main package
        module_sum: Go checksum of the main module, if recorded
        build_settings: Recorded build settings as (key, value) pairs
    """
    declared_module_path: str
    declared_module_version: str
    built_with_toolchain_version: str
    main_package_path: str = ""
    module_sum: str = ""
    build_settings: tuple[tuple[str, str], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "declared_module_path": self.declared_module_path,
            "declared_module_version": self.declared_module_version,
            "built_with_toolchain_version": self.built_with_toolchain_version,
            "main_package_path": self.main_package_path,
            "module_sum": self.module_sum,
            "build_settings": dict(self.build_settings),
        }


def detect_format(data: bytes) -> str | None:
    """
    Identify the executable format from its leading bytes.

    Returns:
        One of 'elf', 'macho', 'pe', 'xcoff', or None if unrecognised
    """
    if data.startswith(ELF_MAGIC):
        return "elf"
    if data[:4] in MACHO_MAGICS:
        return "macho"
    if data.startswith(PE_MAGIC):
        return "pe"
    if data[:2] in XCOFF_MAGICS:
        return "xcoff"
    return None


def _cstring(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("ascii", "replace")


class _Image:
    """
    Mapped sections of an executable image.

    Subclasses fill `segments` with (vaddr, file offset, file size) triples
    and set `data_offset` to the file offset of the section holding the
    build info blob, or leave it None when the image has no such section.
    """

    format_name = "executable"

    def __init__(self, data: bytes):
        self.data = data
        self.segments: list[tuple[int, int, int]] = []
        self.data_offset: int | None = None
        try:
            self._read_tables()
        except struct.error as e:
            raise ArtifactUnreadable(f"corrupt {self.format_name} header: {e}") from e

    def _read_tables(self) -> None:
        raise NotImplementedError

    def read_at(self, addr: int, size: int) -> bytes:
        """Read `size` bytes at a virtual address, or b'' if unmapped."""
        for vaddr, offset, filesz in self.segments:
            if vaddr <= addr < vaddr + filesz:
                start = offset + (addr - vaddr)
                end = min(start + size, offset + filesz)
                return self.data[start:end]
        return b""


class _ElfImage(_Image):
    """ELF: the .go.buildinfo section, else the first writable non-executable PT_LOAD."""

    format_name = "ELF"

    def _read_tables(self) -> None:
        if len(self.data) < 16:
            raise ArtifactUnreadable("truncated ELF header")
        ei_class, ei_data = self.data[4], self.data[5]
        if ei_class not in (1, 2) or ei_data not in (1, 2):
            raise ArtifactUnreadable("unsupported ELF class or byte order")
        is64 = ei_class == 2
        bo = "<" if ei_data == 1 else ">"

        if is64:
            header = struct.unpack_from(bo + "HHIQQQIHHHHHH", self.data, 16)
        else:
            header = struct.unpack_from(bo + "HHIIIIIHHHHHH", self.data, 16)
        phoff, shoff = header[4], header[5]
        phentsize, phnum = header[8], header[9]
        shentsize, shnum, shstrndx = header[10], header[11], header[12]

        writable_segment = None
        for i in range(phnum):
            off = phoff + i * phentsize
            if is64:
                p_type, p_flags, p_offset, p_vaddr, _, p_filesz, _, _ = struct.unpack_from(
                    bo + "IIQQQQQQ", self.data, off)
            else:
                p_type, p_offset, p_vaddr, _, p_filesz, _, p_flags, _ = struct.unpack_from(
                    bo + "IIIIIIII", self.data, off)
            if p_type != PT_LOAD:
                continue
            self.segments.append((p_vaddr, p_offset, p_filesz))
            if writable_segment is None and p_flags & (PF_X | PF_W) == PF_W:
                writable_segment = p_offset
        self.data_offset = writable_segment

        if not shnum or shstrndx >= shnum:
            return
        fmt = bo + ("IIQQQQIIQQ" if is64 else "IIIIIIIIII")
        headers = [struct.unpack_from(fmt, self.data, shoff + i * shentsize) for i in range(shnum)]
        strtab_offset, strtab_size = headers[shstrndx][4], headers[shstrndx][5]
        strtab = self.data[strtab_offset:strtab_offset + strtab_size]
        for sh in headers:
            if _cstring(strtab[sh[0]:]) == ".go.buildinfo":
                self.data_offset = sh[4]
                return


class _MachOImage(_Image):
    """Mach-O: the __go_buildinfo section, else the first read-write segment."""

    format_name = "Mach-O"

    def _read_tables(self) -> None:
        base = 0
        if self.data[:4] == MACHO_FAT_MAGIC:
            narch = struct.unpack_from(">I", self.data, 4)[0]
            if narch == 0:
                raise ArtifactUnreadable("universal binary has no architectures")
            # Like the go command, read the first architecture only
            base = struct.unpack_from(">iiIII", self.data, 8)[2]

        magic = self.data[base:base + 4]
        if magic in (b"\xfe\xed\xfa\xce", b"\xfe\xed\xfa\xcf"):
            bo = ">"
        elif magic in (b"\xce\xfa\xed\xfe", b"\xcf\xfa\xed\xfe"):
            bo = "<"
        else:
            raise ArtifactUnreadable(f"corrupt Mach-O header: bad magic at offset {base:#x}")
        is64 = magic[0] == 0xCF or magic[3] == 0xCF

        ncmds = struct.unpack_from(bo + "I", self.data, base + 16)[0]
        pos = base + (32 if is64 else 28)
        buildinfo_section = None
        writable_segment = None

        for _ in range(ncmds):
            cmd, cmdsize = struct.unpack_from(bo + "II", self.data, pos)
            if cmdsize < 8:
                raise ArtifactUnreadable(f"corrupt Mach-O header: load command size {cmdsize}")
            if cmd in (LC_SEGMENT, LC_SEGMENT_64):
                if cmd == LC_SEGMENT_64:
                    seg_fmt, sect_fmt = bo + "16sQQQQiiII", bo + "16s16sQQIIIIIIII"
                else:
                    seg_fmt, sect_fmt = bo + "16sIIIIiiII", bo + "16s16sIIIIIIIII"
                _, vmaddr, _, fileoff, filesize, maxprot, initprot, nsects, _ = struct.unpack_from(
                    seg_fmt, self.data, pos + 8)
                self.segments.append((vmaddr, base + fileoff, filesize))
                if (writable_segment is None and vmaddr and filesize
                        and maxprot == initprot == VM_PROT_READ_WRITE):
                    writable_segment = base + fileoff

                sect_pos = pos + 8 + struct.calcsize(seg_fmt)
                for _ in range(nsects):
                    section = struct.unpack_from(sect_fmt, self.data, sect_pos)
                    if buildinfo_section is None and _cstring(section[0]) == "__go_buildinfo":
                        buildinfo_section = base + section[4]
                    sect_pos += struct.calcsize(sect_fmt)
            pos += cmdsize

        self.data_offset = buildinfo_section if buildinfo_section is not None else writable_segment


class _PEImage(_Image):
    """PE: the first initialized, readable and writable data section."""

    format_name = "PE"

    def _read_tables(self) -> None:
        pe_offset = struct.unpack_from("<I", self.data, 0x3C)[0]
        if self.data[pe_offset:pe_offset + 4] != b"PE\x00\x00":
            raise ArtifactUnreadable("corrupt PE header: missing PE signature")
        _, nsections, _, _, _, optional_size, _ = struct.unpack_from("<HHIIIHH", self.data, pe_offset + 4)

        optional_offset = pe_offset + 24
        optional_magic = struct.unpack_from("<H", self.data, optional_offset)[0]
        if optional_magic == PE32_PLUS_MAGIC:
            image_base = struct.unpack_from("<Q", self.data, optional_offset + 24)[0]
        elif optional_magic == PE32_MAGIC:
            image_base = struct.unpack_from("<I", self.data, optional_offset + 28)[0]
        else:
            image_base = 0

        pos = optional_offset + optional_size
        for _ in range(nsections):
            (_, _, virtual_address, raw_size, raw_offset,
             _, _, _, _, characteristics) = struct.unpack_from("<8sIIIIIIHHI", self.data, pos)
            self.segments.append((image_base + virtual_address, raw_offset, raw_size))
            if (self.data_offset is None and virtual_address and raw_size
                    and characteristics & ~IMAGE_SCN_ALIGN_32BYTES == PE_DATA_SECTION):
                self.data_offset = raw_offset
            pos += 40


class _XcoffImage(_Image):
    """XCOFF: the STYP_DATA section."""

    format_name = "XCOFF"

    def _read_tables(self) -> None:
        magic, nsections = struct.unpack_from(">HH", self.data, 0)
        optional_size = struct.unpack_from(">H", self.data, 16)[0]
        if magic == XCOFF64_MAGIC:
            pos, fmt = 24 + optional_size, ">8sQQQQQQIIII"
        else:
            pos, fmt = 20 + optional_size, ">8sIIIIIIHHI"

        for _ in range(nsections):
            section = struct.unpack_from(fmt, self.data, pos)
            vaddr, size, scnptr, flags = section[2], section[3], section[4], section[9]
            self.segments.append((vaddr, scnptr, size))
            if self.data_offset is None and flags & 0xFFFF == STYP_DATA:
                self.data_offset = scnptr
            pos += struct.calcsize(fmt)


_IMAGE_TYPES = {
    "elf": _ElfImage,
    "macho": _MachOImage,
    "pe": _PEImage,
    "xcoff": _XcoffImage,
}


def _decode_uvarint(data: bytes, pos: int) -> tuple[int, int]:
    """Decode an unsigned varint; returns (value, next_pos) or (-1, pos) on error."""
    value = 0
    shift = 0
    for i in range(pos, min(len(data), pos + 10)):
        b = data[i]
        value |= (b & 0x7F) << shift
        if b < 0x80:
            return value, i + 1
        shift += 7
    return -1, pos


def _decode_inline_string(data: bytes, pos: int) -> tuple[bytes, int]:
    length, start = _decode_uvarint(data, pos)
    if length <= 0 or start + length > len(data):
        return b"", pos
    return data[start:start + length], start + length


def _find_blob(data: bytes, start: int, end: int) -> int:
    """Offset of the first aligned build info header in data[start:end], or -1."""
    pos = start
    while True:
        i = data.find(BUILDINFO_MAGIC, pos, end)
        if i < 0 or end - i < BUILDINFO_HEADER_SIZE:
            return -1
        if (i - start) % BUILDINFO_ALIGN == 0:
            return i
        pos = start + ((i - start + BUILDINFO_ALIGN - 1) & ~(BUILDINFO_ALIGN - 1))


def read_build_info(data: bytes) -> tuple[str, str]:
    """
    Decode the build info blob of a Go executable image.

    Args:
        data: Complete contents of the binary

    Returns:
        Tuple of (go_version, modinfo); modinfo is '' when the binary
        carries no module information

    Raises:
        ArtifactUnreadable: If the image is not a recognised Go executable
    """
    fmt = detect_format(data)
    if fmt is None:
        raise ArtifactUnreadable("unrecognized file format")

    image = _IMAGE_TYPES[fmt](data)
    start = image.data_offset
    if start is None or start >= len(data):
        raise ArtifactUnreadable("not a Go executable")

    pos = _find_blob(data, start, min(len(data), start + SEARCH_WINDOW))
    if pos < 0:
        raise ArtifactUnreadable("not a Go executable")

    ptr_size, flags = data[pos + 14], data[pos + 15]
    if flags & FLAG_VERSION_INLINE:
        version, nxt = _decode_inline_string(data, pos + BUILDINFO_HEADER_SIZE)
        modinfo, _ = _decode_inline_string(data, nxt)
    else:
        if ptr_size not in (4, 8):
            raise ArtifactUnreadable("not a Go executable")
        bo = ">" if flags & FLAG_BIG_ENDIAN else "<"
        ptr_fmt = bo + ("I" if ptr_size == 4 else "Q")

        def read_string(addr: int) -> bytes:
            header = image.read_at(addr, 2 * ptr_size)
            if len(header) < 2 * ptr_size:
                return b""
            str_ptr, str_len = struct.unpack(bo + ptr_fmt[1] * 2, header)
            raw = image.read_at(str_ptr, str_len)
            if len(raw) < str_len:
                return b""
            return raw

        version_addr = struct.unpack_from(ptr_fmt, data, pos + 16)[0]
        modinfo_addr = struct.unpack_from(ptr_fmt, data, pos + 16 + ptr_size)[0]
        version = read_string(version_addr)
        modinfo = read_string(modinfo_addr)

    if not version:
        raise ArtifactUnreadable("not a Go executable")

    if len(modinfo) >= 2 * MODINFO_SENTINEL_SIZE + 1 and modinfo[-(MODINFO_SENTINEL_SIZE + 1)] == 0x0A:
        modinfo = modinfo[MODINFO_SENTINEL_SIZE:-MODINFO_SENTINEL_SIZE]
    else:
        modinfo = b""
    return version.decode("utf-8", "replace"), modinfo.decode("utf-8", "replace")


def _unquote_setting(value: str) -> str:
    if value.startswith('"'):
        return json.loads(value)
    return value


def parse_modinfo(text: str) -> dict[str, Any]:
    """
    Parse the textual module info recorded by the Go linker.

    Args:
        text: Module info with sentinels already stripped

    Returns:
        Dictionary with 'go', 'path', 'main', 'deps' and 'settings' keys;
        modules are dicts with 'path', 'version', 'sum' and 'replace'

    Raises:
        ValueError: If a line is malformed
    """
    info: dict[str, Any] = {"go": "", "path": "", "main": None, "deps": [], "settings": []}
    last: dict[str, Any] | None = None

    def module(columns: list[str]) -> dict[str, Any]:
        if len(columns) not in (2, 3):
            raise ValueError(f"expected 2 or 3 columns; got {len(columns)}")
        return {
            "path": columns[0],
            "version": columns[1],
            "sum": columns[2] if len(columns) == 3 else "",
            "replace": None,
        }

    for lineno, line in enumerate(text.split("\n"), start=1):
        if line.startswith("go\t"):
            info["go"] = line[3:]
        elif line.startswith("path\t"):
            info["path"] = line[5:]
        elif line.startswith("mod\t"):
            last = info["main"] = module(line[4:].split("\t"))
        elif line.startswith("dep\t"):
            last = module(line[4:].split("\t"))
            info["deps"].append(last)
        elif line.startswith("=>\t"):
            columns = line[3:].split("\t")
            if len(columns) != 3:
                raise ValueError(f"line {lineno}: expected 3 columns for replacement; got {len(columns)}")
            if last is None:
                raise ValueError(f"line {lineno}: replacement with no module on previous line")
            last["replace"] = {"path": columns[0], "version": columns[1], "sum": columns[2], "replace": None}
            last = None
        elif line.startswith("build\t"):
            key, sep, value = line[6:].partition("=")
            if not sep or not key:
                raise ValueError(f"line {lineno}: invalid build flag {line[6:]!r}")
            info["settings"].append((_unquote_setting(key), _unquote_setting(value)))
    return info


def inspect_artifact(path: str | os.PathLike, verbose: bool = False) -> ArtifactMetadata | Missing:
    """
    Extract build provenance from a binary on disk.

    The binary is only read, never executed.

    Args:
        path: Path to the binary
        verbose: Enable verbose logging

    Returns:
        ArtifactMetadata, or MISSING when no file exists at path

    Raises:
        ArtifactUnreadable: For any other I/O or format failure
    """
    try:
        with open(path, "rb") as f:
            data = f.read()
    except FileNotFoundError:
        vlog(f"No binary at {path}", verbose)
        return MISSING
    except OSError as e:
        raise ArtifactUnreadable(f"reading binary buildinfo ({path}): {e}") from e

    try:
        go_version, modinfo = read_build_info(data)
        info = parse_modinfo(modinfo)
    except ArtifactUnreadable as e:
        raise ArtifactUnreadable(f"reading binary buildinfo ({path}): {e.message}") from e
    except ValueError as e:
        raise ArtifactUnreadable(f"reading binary buildinfo ({path}): invalid module info: {e}") from e

    main = info["main"]
    if main is None or not main["path"]:
        raise ArtifactUnreadable(f"reading binary buildinfo ({path}): binary was not built with module support")

    metadata = ArtifactMetadata(
        declared_module_path=main["path"],
        declared_module_version=main["version"],
        built_with_toolchain_version=go_version,
        main_package_path=info["path"],
        module_sum=main["sum"],
        build_settings=tuple(info["settings"]),
    )
    vlog(
        f"Binary {path}: {metadata.declared_module_path}@{metadata.declared_module_version} "
        f"built with {metadata.built_with_toolchain_version}",
        verbose,
    )
    return metadata
