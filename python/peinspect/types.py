"""
PE/COFF header type definitions.

This module holds the constants and the immutable value types produced by
the decoder: FileHeader, OptionalHeader, DataDirectory, Section and the
PeImage aggregate.

All types are frozen dataclasses. A decoded image is read-only; there is no
serialization path back to bytes.

References:
- Microsoft PE/COFF Specification
- https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar

from .errors import CorruptSections
from .reader import ByteReader

# =============================================================================
# Constants
# =============================================================================

# DOS stub
DOS_MAGIC = 0x5A4D  # "MZ" in little-endian
PE_OFFSET_LOCATION = 0x3C  # Offset in DOS header where e_lfanew lives

# PE signature
PE_SIGNATURE = 0x00004550  # "PE\0\0" in little-endian
PE_SIGNATURE_BYTES = b"PE\x00\x00"
PE_SIGNATURE_SIZE = 4

# Machine types
IMAGE_FILE_MACHINE_I386 = 0x014C
IMAGE_FILE_MACHINE_IA64 = 0x0200
IMAGE_FILE_MACHINE_AMD64 = 0x8664

# Optional header magic
IMAGE_NT_OPTIONAL_HDR32_MAGIC = 0x10B
IMAGE_NT_OPTIONAL_HDR64_MAGIC = 0x20B  # PE32+

# File characteristics
IMAGE_FILE_EXECUTABLE_IMAGE = 0x0002
IMAGE_FILE_LARGE_ADDRESS_AWARE = 0x0020
IMAGE_FILE_32BIT_MACHINE = 0x0100
IMAGE_FILE_DLL = 0x2000

# Section characteristics
IMAGE_SCN_CNT_CODE = 0x00000020
IMAGE_SCN_CNT_INITIALIZED_DATA = 0x00000040
IMAGE_SCN_CNT_UNINITIALIZED_DATA = 0x00000080
IMAGE_SCN_MEM_DISCARDABLE = 0x02000000
IMAGE_SCN_MEM_EXECUTE = 0x20000000
IMAGE_SCN_MEM_READ = 0x40000000
IMAGE_SCN_MEM_WRITE = 0x80000000

# Data directory indices
IMAGE_DIRECTORY_ENTRY_EXPORT = 0
IMAGE_DIRECTORY_ENTRY_IMPORT = 1
IMAGE_DIRECTORY_ENTRY_RESOURCE = 2
IMAGE_DIRECTORY_ENTRY_EXCEPTION = 3
IMAGE_DIRECTORY_ENTRY_SECURITY = 4
IMAGE_DIRECTORY_ENTRY_BASERELOC = 5
IMAGE_DIRECTORY_ENTRY_DEBUG = 6
IMAGE_DIRECTORY_ENTRY_ARCHITECTURE = 7
IMAGE_DIRECTORY_ENTRY_GLOBALPTR = 8
IMAGE_DIRECTORY_ENTRY_TLS = 9
IMAGE_DIRECTORY_ENTRY_LOAD_CONFIG = 10
IMAGE_DIRECTORY_ENTRY_BOUND_IMPORT = 11
IMAGE_DIRECTORY_ENTRY_IAT = 12
IMAGE_DIRECTORY_ENTRY_DELAY_IMPORT = 13
IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR = 14
IMAGE_NUMBEROF_DIRECTORY_ENTRIES = 16

DIRECTORY_NAMES = (
    "Export",
    "Import",
    "Resource",
    "Exception",
    "Security",
    "BaseReloc",
    "Debug",
    "Architecture",
    "GlobalPtr",
    "TLS",
    "LoadConfig",
    "BoundImport",
    "IAT",
    "DelayImport",
    "ComDescriptor",
    "Reserved",
)

# Structure sizes
COFF_HEADER_SIZE = 20
NT_HEADERS_PREFIX_SIZE = PE_SIGNATURE_SIZE + COFF_HEADER_SIZE  # 0x18
DATA_DIRECTORY_SIZE = 8
SECTION_HEADER_SIZE = 40
SECTION_NAME_SIZE = 8


# =============================================================================
# Enumerations
# =============================================================================


class Machine(enum.IntEnum):
    """Supported target architectures (COFF Machine field)."""

    I386 = IMAGE_FILE_MACHINE_I386
    IA64 = IMAGE_FILE_MACHINE_IA64
    AMD64 = IMAGE_FILE_MACHINE_AMD64


class OptionalHeaderWidth(enum.Enum):
    """Optional header layout variant, selected by its magic.

    Each member carries (magic, word size, fixed prefix size). The fixed
    prefix is everything up to and including NumberOfRvaAndSizes; the data
    directory table starts right after it.
    """

    OPT32 = (IMAGE_NT_OPTIONAL_HDR32_MAGIC, 4, 96)
    OPT64 = (IMAGE_NT_OPTIONAL_HDR64_MAGIC, 8, 112)

    def __init__(self, magic: int, word_size: int, fixed_size: int):
        self.magic = magic
        self.word_size = word_size
        self.fixed_size = fixed_size

    @property
    def nominal_size(self) -> int:
        """Size with a full table of 16 data directories (0xE0 / 0xF0)."""
        return self.fixed_size + IMAGE_NUMBEROF_DIRECTORY_ENTRIES * DATA_DIRECTORY_SIZE

    @classmethod
    def from_magic(cls, magic: int) -> "OptionalHeaderWidth | None":
        for width in cls:
            if width.magic == magic:
                return width
        return None


# =============================================================================
# Headers
# =============================================================================


@dataclass(frozen=True)
class FileHeader:
    """COFF file header (IMAGE_FILE_HEADER).

    This 20-byte header comes right after the PE signature. The symbol table
    pointer and symbol count are not kept; they are meaningless for images.
    """

    machine: Machine
    number_of_sections: int
    timestamp: datetime  # TimeDateStamp as UTC
    raw_timestamp: int
    optional_header_size: int
    characteristics: int

    SIZE: ClassVar[int] = COFF_HEADER_SIZE

    @property
    def is_dll(self) -> bool:
        """Check if this is a DLL."""
        return bool(self.characteristics & IMAGE_FILE_DLL)

    @property
    def is_executable(self) -> bool:
        """Check if this is an executable image."""
        return bool(self.characteristics & IMAGE_FILE_EXECUTABLE_IMAGE)


@dataclass(frozen=True)
class DataDirectory:
    """Data directory entry (IMAGE_DATA_DIRECTORY).

    Only the location is decoded; the table it points to is not.
    """

    index: int
    virtual_address: int  # RVA of the data
    size: int

    SIZE: ClassVar[int] = DATA_DIRECTORY_SIZE

    @classmethod
    def from_reader(cls, reader: ByteReader, index: int) -> "DataDirectory":
        """Read one {RVA, size} pair at the cursor."""
        virtual_address = reader.u32()
        size = reader.u32()
        return cls(index, virtual_address, size)

    @property
    def name(self) -> str:
        return DIRECTORY_NAMES[self.index]

    @property
    def is_present(self) -> bool:
        """Check if this data directory is present."""
        return self.virtual_address != 0 or self.size != 0


@dataclass(frozen=True)
class OptionalHeader:
    """PE32 / PE32+ optional header (IMAGE_OPTIONAL_HEADER32/64).

    section_alignment and file_alignment hold the declared value minus one,
    i.e. an alignment mask. Use align_up()/align_down() with them directly.

    When the declared SizeOfOptionalHeader ends inside the fixed fields,
    every field past that point is None and is_complete is False.
    """

    width: OptionalHeaderWidth
    code_size: int | None = None
    entry_point: int | None = None
    code_base: int | None = None
    data_base: int | None = None  # Always 0 for PE32+
    image_base: int | None = None  # 8 bytes for PE32+
    section_alignment: int | None = None  # mask
    file_alignment: int | None = None  # mask
    size_of_image: int | None = None
    size_of_headers: int | None = None
    checksum: int | None = None
    subsystem: int | None = None
    dll_characteristics: int | None = None
    size_of_stack_reserve: int | None = None
    size_of_stack_commit: int | None = None
    size_of_heap_reserve: int | None = None
    size_of_heap_commit: int | None = None
    loader_flags: int | None = None
    number_of_rva_and_sizes: int | None = None
    directories: tuple[DataDirectory, ...] = ()
    directories_truncated: bool = False

    @property
    def is_64bit(self) -> bool:
        return self.width is OptionalHeaderWidth.OPT64

    @property
    def is_complete(self) -> bool:
        """True when every fixed field up to NumberOfRvaAndSizes was read."""
        return self.number_of_rva_and_sizes is not None

    def get_directory(self, index: int) -> DataDirectory | None:
        """Get a data directory by index, if it was read."""
        if 0 <= index < len(self.directories):
            return self.directories[index]
        return None


@dataclass(frozen=True)
class Section:
    """PE/COFF section header (IMAGE_SECTION_HEADER).

    Each section header is 40 bytes. Names starting with "/" refer to the
    COFF string table, which is not resolved: name is empty for those and
    raw_name keeps the original bytes.
    """

    raw_name: bytes  # 8 bytes, null-padded (NOT null-terminated if 8 chars)
    name: str
    virtual_size: int  # Size in memory (can be > size_of_raw_data)
    virtual_address: int  # RVA of section
    size_of_raw_data: int  # Size in file (rounded to FileAlignment)
    pointer_to_raw_data: int  # File offset
    pointer_to_relocations: int
    pointer_to_line_numbers: int
    number_of_relocations: int
    number_of_line_numbers: int
    characteristics: int

    SIZE: ClassVar[int] = SECTION_HEADER_SIZE

    @classmethod
    def from_reader(cls, reader: ByteReader) -> "Section":
        """Read one 40-byte section header at the cursor."""
        raw_name = reader.read_bytes(SECTION_NAME_SIZE)
        return cls(
            raw_name,
            decode_section_name(raw_name),
            reader.u32(),
            reader.u32(),
            reader.u32(),
            reader.u32(),
            reader.u32(),
            reader.u32(),
            reader.u16(),
            reader.u16(),
            reader.u32(),
        )

    @property
    def has_long_name(self) -> bool:
        """Check if the name is a string table reference ("/nnn")."""
        return self.raw_name[:1] == b"/"

    @property
    def end_rva(self) -> int:
        """RVA of end of section in memory."""
        return self.virtual_address + self.virtual_size

    @property
    def end_file_offset(self) -> int:
        """File offset of end of section data."""
        return self.pointer_to_raw_data + self.size_of_raw_data

    @property
    def is_code(self) -> bool:
        return bool(self.characteristics & IMAGE_SCN_CNT_CODE)

    @property
    def is_initialized_data(self) -> bool:
        return bool(self.characteristics & IMAGE_SCN_CNT_INITIALIZED_DATA)

    @property
    def is_uninitialized_data(self) -> bool:
        return bool(self.characteristics & IMAGE_SCN_CNT_UNINITIALIZED_DATA)

    @property
    def is_readable(self) -> bool:
        return bool(self.characteristics & IMAGE_SCN_MEM_READ)

    @property
    def is_writable(self) -> bool:
        return bool(self.characteristics & IMAGE_SCN_MEM_WRITE)

    @property
    def is_executable(self) -> bool:
        return bool(self.characteristics & IMAGE_SCN_MEM_EXECUTE)

    def contains_rva(self, rva: int) -> bool:
        """Check if an RVA falls within this section."""
        return self.virtual_address <= rva < self.end_rva

    def contains_file_offset(self, offset: int) -> bool:
        """Check if a file offset falls within this section's raw data."""
        if self.size_of_raw_data == 0:
            return False
        return self.pointer_to_raw_data <= offset < self.end_file_offset


@dataclass(frozen=True)
class PeImage:
    """A decoded PE image: headers plus the section table.

    sections may hold fewer entries than the file header declares when the
    section table is cut off by the end of the file.
    """

    pe_offset: int
    file_header: FileHeader
    optional_header: OptionalHeader
    sections: tuple[Section, ...]

    @property
    def machine(self) -> Machine:
        return self.file_header.machine

    @property
    def declared_section_count(self) -> int:
        return self.file_header.number_of_sections

    @property
    def sections_truncated(self) -> bool:
        """True when fewer sections were read than declared."""
        return len(self.sections) < self.declared_section_count

    @property
    def directories(self) -> tuple[DataDirectory, ...]:
        return self.optional_header.directories

    @property
    def section_table_offset(self) -> int:
        """File offset of the first section header."""
        return (
            self.pe_offset
            + NT_HEADERS_PREFIX_SIZE
            + self.file_header.optional_header_size
        )

    def require_complete(self) -> "PeImage":
        """Return self, or raise CorruptSections if the section table is short."""
        if self.sections_truncated:
            raise CorruptSections(self.declared_section_count, len(self.sections))
        return self


# =============================================================================
# Helper Functions
# =============================================================================


def decode_section_name(raw_name: bytes) -> str:
    """Convert an 8-byte section name to a string.

    String table references ("/4") are left unresolved and yield "".
    """
    if raw_name[:1] == b"/":
        return ""
    null_pos = raw_name.find(b"\x00")
    if null_pos >= 0:
        raw_name = raw_name[:null_pos]
    return raw_name.decode("ascii", errors="replace")


def align_up(value: int, mask: int) -> int:
    """Round value up using an alignment mask (alignment - 1)."""
    return (value + mask) & ~mask


def align_down(value: int, mask: int) -> int:
    """Round value down using an alignment mask (alignment - 1)."""
    return value & ~mask
