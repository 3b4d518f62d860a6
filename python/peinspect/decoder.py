"""
PE header decoder.

Decoding is a single forward pass over one ByteReader:

1. locate_pe_header: check the "MZ" stub, fetch e_lfanew
2. read_file_header: PE signature + 20-byte COFF header
3. read_optional_header: PE32 / PE32+ fixed fields and data directories
4. read_section_table: N 40-byte section headers

Stages 1-2 and the fixed optional header fields are all-or-nothing. Two
places are lenient on purpose, because inspection has to keep working on
damaged or hand-crafted binaries:

- The data directory table: an out-of-range RVA count skips the table, and
  a table cut off by end of file keeps the entries read so far.
- The section table: a table cut off by end of file keeps the headers read
  so far. PeImage.sections_truncated reports it.

An optional header whose declared size ends inside its fixed fields is
decoded best-effort up to that size (see read_optional_header).
"""

import logging
from datetime import datetime, timezone

from .errors import (
    InvalidOptionalMagic,
    InvalidPeSignature,
    InvalidStubHeader,
    TruncatedError,
    UnsupportedArchitecture,
)
from .reader import ByteReader
from .types import (
    DOS_MAGIC,
    IMAGE_NUMBEROF_DIRECTORY_ENTRIES,
    NT_HEADERS_PREFIX_SIZE,
    PE_OFFSET_LOCATION,
    PE_SIGNATURE,
    SECTION_HEADER_SIZE,
    DataDirectory,
    FileHeader,
    Machine,
    OptionalHeader,
    OptionalHeaderWidth,
    PeImage,
    Section,
)

logger = logging.getLogger(__name__)

# RVA counts above this are treated as garbage and the table is skipped
MAX_DIRECTORY_ENTRIES = IMAGE_NUMBEROF_DIRECTORY_ENTRIES


def locate_pe_header(reader: ByteReader) -> int:
    """Validate the DOS stub and return the PE header offset.

    Reads the fixed fields at offsets 0 and 0x3C without moving the cursor.
    The returned offset is not range-checked; reading the signature there
    does that.

    Raises:
        InvalidStubHeader: First two bytes are not "MZ"
        TruncatedError: Data ends before e_lfanew
    """
    magic = reader.u16_at(0)
    if magic != DOS_MAGIC:
        raise InvalidStubHeader(f"Not a DOS/PE file (bad magic: 0x{magic:04X})")
    return reader.u32_at(PE_OFFSET_LOCATION)


def read_file_header(reader: ByteReader) -> FileHeader:
    """Read the PE signature and COFF file header at the cursor.

    Raises:
        InvalidPeSignature: Signature is not "PE\\0\\0"
        UnsupportedArchitecture: Machine is not I386, IA64 or AMD64
        TruncatedError: Data ends inside the header
    """
    offset = reader.position
    signature = reader.u32()
    if signature != PE_SIGNATURE:
        raise InvalidPeSignature(
            f"Invalid PE signature 0x{signature:08X} at offset 0x{offset:x}"
        )

    machine_value = reader.u16()
    try:
        machine = Machine(machine_value)
    except ValueError:
        raise UnsupportedArchitecture(machine_value) from None

    number_of_sections = reader.u16()
    raw_timestamp = reader.u32()
    reader.u32()  # PointerToSymbolTable
    reader.u32()  # NumberOfSymbols
    optional_header_size = reader.u16()
    characteristics = reader.u16()

    return FileHeader(
        machine=machine,
        number_of_sections=number_of_sections,
        timestamp=datetime.fromtimestamp(raw_timestamp, tz=timezone.utc),
        raw_timestamp=raw_timestamp,
        optional_header_size=optional_header_size,
        characteristics=characteristics,
    )


def read_optional_header(reader: ByteReader, declared_size: int) -> OptionalHeader:
    """Read the optional header at the cursor.

    The magic selects the layout. The fixed fields are then read through a
    view bounded by min(declared_size, nominal size, end of data):

    - If the declared size ends first, reading stops there and the fields
      not reached are None (no data directories).
    - If the data ends before the declared size, the header is truncated
      and TruncatedError propagates.

    Data directories are read from the unbounded reader, directly after the
    fixed fields.

    Args:
        reader: Reader positioned at the optional header
        declared_size: SizeOfOptionalHeader from the file header

    Raises:
        InvalidOptionalMagic: Magic is neither 0x10B nor 0x20B
        TruncatedError: Data ends inside the declared fixed fields
    """
    start = reader.position
    magic = reader.u16()
    width = OptionalHeaderWidth.from_magic(magic)
    if width is None:
        raise InvalidOptionalMagic(magic)

    bound = min(declared_size, width.nominal_size)
    reader.seek(start)
    view = reader.bounded(bound)

    fields: dict = {}
    try:
        _read_fixed_fields(view, width, fields)
    except TruncatedError as e:
        if e.end <= start + bound:
            raise
        logger.debug(
            "Optional header at 0x%x cut off by declared size %d; "
            "stopped before offset 0x%x",
            start,
            declared_size,
            e.offset,
        )

    count = fields.get("number_of_rva_and_sizes")
    if count is not None:
        if count <= 0 or count > MAX_DIRECTORY_ENTRIES:
            logger.debug("Skipping data directories: NumberOfRvaAndSizes=%d", count)
        else:
            reader.seek(view.position)
            fields["directories"], fields["directories_truncated"] = (
                _read_directories(reader, count)
            )

    return OptionalHeader(width=width, **fields)


def _read_fixed_fields(
    view: ByteReader, width: OptionalHeaderWidth, fields: dict
) -> None:
    """Read fixed optional header fields into fields, in file order.

    On TruncatedError, fields holds everything read before the failure.
    """
    view.skip(2)  # Magic
    view.skip(2)  # Major/MinorLinkerVersion
    fields["code_size"] = view.u32()
    view.skip(4)  # SizeOfInitializedData
    view.skip(4)  # SizeOfUninitializedData
    fields["entry_point"] = view.u32()
    fields["code_base"] = view.u32()

    if width is OptionalHeaderWidth.OPT32:
        fields["data_base"] = view.u32()
        fields["image_base"] = view.u32()
    else:
        # PE32+ has no BaseOfData
        fields["image_base"] = view.u64()
        fields["data_base"] = 0

    # Stored as masks (alignment - 1)
    fields["section_alignment"] = view.u32() - 1
    fields["file_alignment"] = view.u32() - 1

    view.skip(4)  # Major/MinorOperatingSystemVersion
    view.skip(4)  # Major/MinorImageVersion
    view.skip(4)  # Major/MinorSubsystemVersion
    view.skip(4)  # Win32VersionValue
    fields["size_of_image"] = view.u32()
    fields["size_of_headers"] = view.u32()
    fields["checksum"] = view.u32()
    fields["subsystem"] = view.u16()
    fields["dll_characteristics"] = view.u16()

    fields["size_of_stack_reserve"] = view.uint(width.word_size)
    fields["size_of_stack_commit"] = view.uint(width.word_size)
    fields["size_of_heap_reserve"] = view.uint(width.word_size)
    fields["size_of_heap_commit"] = view.uint(width.word_size)

    fields["loader_flags"] = view.u32()
    fields["number_of_rva_and_sizes"] = view.u32()


def _read_directories(
    reader: ByteReader, count: int
) -> tuple[tuple[DataDirectory, ...], bool]:
    """Read up to count data directories; stop quietly at end of data.

    Returns:
        (directories read, whether the table was cut short)
    """
    directories = []
    for index in range(count):
        try:
            directories.append(DataDirectory.from_reader(reader, index))
        except TruncatedError:
            logger.debug(
                "Data directory table truncated: %d of %d entries",
                len(directories),
                count,
            )
            return tuple(directories), True
    return tuple(directories), False


def read_section_table(reader: ByteReader, count: int) -> tuple[Section, ...]:
    """Read up to count section headers at the cursor.

    Only as many headers as fit in the remaining data are read, so a bogus
    NumberOfSections never drives more work than the file size allows.
    """
    available = reader.remaining // SECTION_HEADER_SIZE
    if available < count:
        logger.debug(
            "Section table at 0x%x truncated: %d of %d headers present",
            reader.position,
            available,
            count,
        )
    return tuple(Section.from_reader(reader) for _ in range(min(count, available)))


def decode(data, strict: bool = False) -> PeImage:
    """Decode PE headers and the section table from a byte buffer.

    Args:
        data: bytes, bytearray, memoryview or mmap holding the whole file
        strict: Raise CorruptSections instead of returning a short section
                table

    Returns:
        PeImage (sections may be fewer than declared unless strict)

    Raises:
        PeFormatError: One subclass per failure kind (see peinspect.errors)
    """
    reader = ByteReader(data)

    pe_offset = locate_pe_header(reader)
    reader.seek(pe_offset)
    file_header = read_file_header(reader)

    optional_header = read_optional_header(reader, file_header.optional_header_size)

    reader.seek(pe_offset + NT_HEADERS_PREFIX_SIZE + file_header.optional_header_size)
    sections = read_section_table(reader, file_header.number_of_sections)

    image = PeImage(
        pe_offset=pe_offset,
        file_header=file_header,
        optional_header=optional_header,
        sections=sections,
    )
    if strict:
        image.require_complete()
    return image
