"""
Synthetic PE image builders for tests.

The decoder is read-only, so tests build their inputs here with struct.
Fields the decoder discards (linker version, OS versions, symbol table
pointer, ...) are always written as zero, which lets encode_headers()
reproduce a fixture's header bytes exactly from a decoded PeImage.

Usage:
------
    from pe_test_utils import build_pe

    data = build_pe()                          # PE32, two sections
    data = build_pe(pe64=True)                 # PE32+
    data = build_pe(number_of_sections=5, pad_to_raw_data=False)
    data = build_pe(optional_header_size=40)   # header cut short
"""

import struct

from peinspect.types import (
    DOS_MAGIC,
    IMAGE_FILE_EXECUTABLE_IMAGE,
    IMAGE_FILE_MACHINE_AMD64,
    IMAGE_FILE_MACHINE_I386,
    IMAGE_NT_OPTIONAL_HDR32_MAGIC,
    IMAGE_NT_OPTIONAL_HDR64_MAGIC,
    IMAGE_SCN_CNT_CODE,
    IMAGE_SCN_CNT_INITIALIZED_DATA,
    IMAGE_SCN_MEM_EXECUTE,
    IMAGE_SCN_MEM_READ,
    IMAGE_SCN_MEM_WRITE,
    PE_OFFSET_LOCATION,
    PE_SIGNATURE,
    PeImage,
)

FILE_HEADER_FMT = "<IHHIIIHH"  # Signature + IMAGE_FILE_HEADER
OPT32_FMT = "<HBBIIIIIIIIIHHHHHHIIIIHHIIIIII"
OPT64_FMT = "<HBBIIIIIQIIHHHHHHIIIIHHQQQQII"
SECTION_FMT = "<8sIIIIIIHHI"

DEFAULT_PE_OFFSET = 0x80
DEFAULT_TIMESTAMP = 0x5F5E1000

OPT_DEFAULTS = {
    "code_size": 0x200,
    "entry_point": 0x1010,
    "code_base": 0x1000,
    "data_base": 0x2000,
    "image_base": 0x400000,
    "section_alignment": 0x1000,
    "file_alignment": 0x200,
    "size_of_image": 0x3000,
    "size_of_headers": 0x200,
    "checksum": 0,
    "subsystem": 3,  # Windows console
    "dll_characteristics": 0x8140,
    "size_of_stack_reserve": 0x100000,
    "size_of_stack_commit": 0x1000,
    "size_of_heap_reserve": 0x100000,
    "size_of_heap_commit": 0x1000,
    "loader_flags": 0,
}

# 16 slots; Import and IAT populated
DEFAULT_DIRECTORIES = [(0, 0)] * 16
DEFAULT_DIRECTORIES[1] = (0x2010, 0x28)
DEFAULT_DIRECTORIES[12] = (0x2000, 0x10)

DEFAULT_SECTIONS = [
    {
        "name": b".text",
        "virtual_size": 0x100,
        "virtual_address": 0x1000,
        "size_of_raw_data": 0x200,
        "pointer_to_raw_data": 0x200,
        "characteristics": IMAGE_SCN_CNT_CODE | IMAGE_SCN_MEM_EXECUTE | IMAGE_SCN_MEM_READ,
    },
    {
        "name": b".data",
        "virtual_size": 0x80,
        "virtual_address": 0x2000,
        "size_of_raw_data": 0x200,
        "pointer_to_raw_data": 0x400,
        "characteristics": IMAGE_SCN_CNT_INITIALIZED_DATA
        | IMAGE_SCN_MEM_READ
        | IMAGE_SCN_MEM_WRITE,
    },
]


def pack_file_header(
    machine: int = IMAGE_FILE_MACHINE_I386,
    number_of_sections: int = 0,
    timestamp: int = DEFAULT_TIMESTAMP,
    optional_header_size: int = 0xE0,
    characteristics: int = IMAGE_FILE_EXECUTABLE_IMAGE,
    signature: int = PE_SIGNATURE,
) -> bytes:
    """Pack the PE signature and COFF file header (24 bytes)."""
    return struct.pack(
        FILE_HEADER_FMT,
        signature,
        machine,
        number_of_sections,
        timestamp,
        0,  # PointerToSymbolTable
        0,  # NumberOfSymbols
        optional_header_size,
        characteristics,
    )


def pack_optional_header(
    pe64: bool = False,
    number_of_rva_and_sizes: int = 16,
    magic: int | None = None,
    **fields,
) -> bytes:
    """Pack the fixed part of a PE32 / PE32+ optional header (96 / 112 bytes).

    Alignments are given as declared values, not masks.
    """
    v = dict(OPT_DEFAULTS)
    v.update(fields)

    if pe64:
        return struct.pack(
            OPT64_FMT,
            IMAGE_NT_OPTIONAL_HDR64_MAGIC if magic is None else magic,
            0,  # MajorLinkerVersion
            0,  # MinorLinkerVersion
            v["code_size"],
            0,  # SizeOfInitializedData
            0,  # SizeOfUninitializedData
            v["entry_point"],
            v["code_base"],
            v["image_base"],
            v["section_alignment"],
            v["file_alignment"],
            0, 0, 0, 0, 0, 0,  # OS / image / subsystem versions
            0,  # Win32VersionValue
            v["size_of_image"],
            v["size_of_headers"],
            v["checksum"],
            v["subsystem"],
            v["dll_characteristics"],
            v["size_of_stack_reserve"],
            v["size_of_stack_commit"],
            v["size_of_heap_reserve"],
            v["size_of_heap_commit"],
            v["loader_flags"],
            number_of_rva_and_sizes,
        )

    return struct.pack(
        OPT32_FMT,
        IMAGE_NT_OPTIONAL_HDR32_MAGIC if magic is None else magic,
        0,
        0,
        v["code_size"],
        0,
        0,
        v["entry_point"],
        v["code_base"],
        v["data_base"],
        v["image_base"],
        v["section_alignment"],
        v["file_alignment"],
        0, 0, 0, 0, 0, 0,
        0,
        v["size_of_image"],
        v["size_of_headers"],
        v["checksum"],
        v["subsystem"],
        v["dll_characteristics"],
        v["size_of_stack_reserve"],
        v["size_of_stack_commit"],
        v["size_of_heap_reserve"],
        v["size_of_heap_commit"],
        v["loader_flags"],
        number_of_rva_and_sizes,
    )


def pack_directories(directories: list[tuple[int, int]]) -> bytes:
    return b"".join(struct.pack("<II", rva, size) for rva, size in directories)


def pack_section(
    name: bytes = b".text",
    virtual_size: int = 0,
    virtual_address: int = 0,
    size_of_raw_data: int = 0,
    pointer_to_raw_data: int = 0,
    pointer_to_relocations: int = 0,
    pointer_to_line_numbers: int = 0,
    number_of_relocations: int = 0,
    number_of_line_numbers: int = 0,
    characteristics: int = 0,
) -> bytes:
    """Pack one 40-byte section header."""
    return struct.pack(
        SECTION_FMT,
        name.ljust(8, b"\x00"),
        virtual_size,
        virtual_address,
        size_of_raw_data,
        pointer_to_raw_data,
        pointer_to_relocations,
        pointer_to_line_numbers,
        number_of_relocations,
        number_of_line_numbers,
        characteristics,
    )


def build_pe(
    pe64: bool = False,
    machine: int | None = None,
    sections: list[dict] | None = None,
    number_of_sections: int | None = None,
    directories: list[tuple[int, int]] | None = None,
    number_of_rva_and_sizes: int | None = None,
    optional_header_size: int | None = None,
    timestamp: int = DEFAULT_TIMESTAMP,
    characteristics: int = IMAGE_FILE_EXECUTABLE_IMAGE,
    pe_offset: int = DEFAULT_PE_OFFSET,
    pad_to_raw_data: bool = True,
    **opt_fields,
) -> bytearray:
    """Build a complete synthetic PE image.

    Args:
        pe64: Build PE32+ instead of PE32
        machine: COFF machine (defaults to I386 / AMD64 by width)
        sections: Section header kwargs for pack_section()
        number_of_sections: Declared count (defaults to len(sections))
        directories: (rva, size) pairs written after the fixed fields
        number_of_rva_and_sizes: Declared count (defaults to len(directories))
        optional_header_size: Declared size (defaults to the written size).
            The section table is placed at this offset, so a smaller value
            overlaps the tail of the optional header.
        pad_to_raw_data: Extend the file to cover all section raw data.
            When False the file ends right after the section table.
        opt_fields: Overrides for pack_optional_header()

    Returns:
        Mutable image bytes
    """
    if machine is None:
        machine = IMAGE_FILE_MACHINE_AMD64 if pe64 else IMAGE_FILE_MACHINE_I386
    if sections is None:
        sections = DEFAULT_SECTIONS
    if number_of_sections is None:
        number_of_sections = len(sections)
    if directories is None:
        directories = DEFAULT_DIRECTORIES
    if number_of_rva_and_sizes is None:
        number_of_rva_and_sizes = len(directories)

    opt = pack_optional_header(
        pe64, number_of_rva_and_sizes=number_of_rva_and_sizes, **opt_fields
    )
    opt += pack_directories(directories)
    if optional_header_size is None:
        optional_header_size = len(opt)

    headers = pack_file_header(
        machine=machine,
        number_of_sections=number_of_sections,
        timestamp=timestamp,
        optional_header_size=optional_header_size,
        characteristics=characteristics,
    )
    section_table = b"".join(pack_section(**s) for s in sections)

    opt_offset = pe_offset + len(headers)
    table_offset = opt_offset + optional_header_size
    size = max(opt_offset + len(opt), table_offset + len(section_table))
    if pad_to_raw_data:
        for s in sections:
            size = max(size, s.get("pointer_to_raw_data", 0) + s.get("size_of_raw_data", 0))

    data = bytearray(size)
    struct.pack_into("<H", data, 0, DOS_MAGIC)
    struct.pack_into("<I", data, PE_OFFSET_LOCATION, pe_offset)
    data[pe_offset:opt_offset] = headers
    data[opt_offset : opt_offset + len(opt)] = opt
    data[table_offset : table_offset + len(section_table)] = section_table
    return data


def section_table_end(data: bytes | bytearray, pe_offset: int = DEFAULT_PE_OFFSET) -> int:
    """Offset just past the declared section table of a built image."""
    (number_of_sections,) = struct.unpack_from("<H", data, pe_offset + 6)
    (optional_header_size,) = struct.unpack_from("<H", data, pe_offset + 20)
    return pe_offset + 24 + optional_header_size + 40 * number_of_sections


def encode_headers(image: PeImage) -> bytes:
    """Re-encode the file header, optional header and directories of a
    decoded image, for comparison against the fixture bytes."""
    fh = image.file_header
    opt = image.optional_header

    fields = {
        name: getattr(opt, name)
        for name in OPT_DEFAULTS
        if name not in ("section_alignment", "file_alignment")
    }
    if opt.is_64bit:
        del fields["data_base"]

    return (
        pack_file_header(
            machine=int(fh.machine),
            number_of_sections=fh.number_of_sections,
            timestamp=fh.raw_timestamp,
            optional_header_size=fh.optional_header_size,
            characteristics=fh.characteristics,
        )
        + pack_optional_header(
            opt.is_64bit,
            number_of_rva_and_sizes=opt.number_of_rva_and_sizes,
            section_alignment=opt.section_alignment + 1,
            file_alignment=opt.file_alignment + 1,
            **fields,
        )
        + pack_directories([(d.virtual_address, d.size) for d in opt.directories])
    )
