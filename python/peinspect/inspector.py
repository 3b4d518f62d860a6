"""
High-level read-only access to a PE file.

PeInspector owns file acquisition and exposes lookup helpers over a decoded
PeImage: section search, data directory access and RVA / file offset
conversion.

Files are memory-mapped read-only for the duration of decoding. The decoded
image copies everything it keeps, so the mapping is released before load()
returns, whether or not decoding succeeded.
"""

import logging
import mmap
from pathlib import Path
from typing import Iterator

from .decoder import decode, locate_pe_header
from .errors import PeFormatError
from .reader import ByteReader
from .types import (
    PE_SIGNATURE,
    DataDirectory,
    FileHeader,
    OptionalHeader,
    PeImage,
    Section,
)

logger = logging.getLogger(__name__)


class PeInspector:
    """Read-only interface to a decoded PE binary.

    Usage:
        pe = PeInspector.load(Path("foo.dll"))

        section = pe.find_section(".text")
        offset = pe.rva_to_file_offset(0x1000)

        if pe.image.sections_truncated:
            ...
    """

    def __init__(self, data, path: Path | None = None, strict: bool = False):
        """Decode an in-memory PE binary.

        Prefer using PeInspector.load() for files on disk.

        Args:
            data: PE binary data
            path: Original file path (for messages)
            strict: Reject binaries whose section table is cut short
        """
        self._path = path
        self._file_size = len(data)
        self._image = decode(data, strict=strict)

    @classmethod
    def load(cls, path: Path, strict: bool = False) -> "PeInspector":
        """Load and decode a PE binary from file.

        Args:
            path: Path to PE binary
            strict: Reject binaries whose section table is cut short

        Returns:
            PeInspector for the decoded image

        Raises:
            PeFormatError: If the file is not a decodable PE
            OSError: If the file cannot be read
        """
        path = Path(path)
        with open(path, "rb") as f:
            size = path.stat().st_size
            if size == 0:
                # mmap rejects empty files
                return cls(b"", path, strict)
            with mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ) as mapped:
                logger.debug("Decoding %s (%d bytes)", path, size)
                return cls(mapped, path, strict)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def image(self) -> PeImage:
        """The decoded image."""
        return self._image

    @property
    def file_size(self) -> int:
        return self._file_size

    @property
    def file_header(self) -> FileHeader:
        """COFF file header."""
        return self._image.file_header

    @property
    def optional_header(self) -> OptionalHeader:
        """PE32 or PE32+ optional header."""
        return self._image.optional_header

    @property
    def image_base(self) -> int:
        """Preferred load address (0 if the header was cut short before it)."""
        return self.optional_header.image_base or 0

    @property
    def file_alignment(self) -> int | None:
        """File alignment for raw data (the declared value, not the mask)."""
        mask = self.optional_header.file_alignment
        return None if mask is None else mask + 1

    @property
    def section_alignment(self) -> int | None:
        """Section alignment in memory (the declared value, not the mask)."""
        mask = self.optional_header.section_alignment
        return None if mask is None else mask + 1

    @property
    def is_dll(self) -> bool:
        return self.file_header.is_dll

    @property
    def is_64bit(self) -> bool:
        return self.optional_header.is_64bit

    # =========================================================================
    # Query Operations
    # =========================================================================

    def iter_sections(self) -> Iterator[Section]:
        """Iterate over all decoded sections."""
        yield from self._image.sections

    def find_section(self, name: str) -> Section | None:
        """Find a section by name.

        Args:
            name: Section name (e.g., ".text"). Names longer than 8
                  characters are compared by their first 8.

        Returns:
            Section if found, None otherwise
        """
        search_name = name[:8]
        for section in self._image.sections:
            if section.name and section.name == search_name:
                return section
        return None

    def get_section_by_index(self, index: int) -> Section | None:
        """Get section by index."""
        if 0 <= index < len(self._image.sections):
            return self._image.sections[index]
        return None

    def get_data_directory(self, index: int) -> DataDirectory | None:
        """Get a data directory by index."""
        return self.optional_header.get_directory(index)

    # =========================================================================
    # Address Conversion
    # =========================================================================

    def rva_to_file_offset(self, rva: int) -> int | None:
        """Convert RVA to file offset using section table.

        Returns:
            File offset if RVA is in a section with raw data, None otherwise.
            Returns None for BSS/uninitialized sections (size_of_raw_data == 0).
        """
        for section in self._image.sections:
            if section.contains_rva(rva):
                if section.size_of_raw_data == 0:
                    return None
                section_offset = rva - section.virtual_address
                if section_offset >= section.size_of_raw_data:
                    return None
                return section.pointer_to_raw_data + section_offset
        return None

    def file_offset_to_rva(self, offset: int) -> int | None:
        """Convert file offset to RVA, if the offset is inside a section."""
        for section in self._image.sections:
            if section.contains_file_offset(offset):
                return section.virtual_address + (offset - section.pointer_to_raw_data)
        return None

    def rva_to_va(self, rva: int) -> int:
        """Convert RVA to virtual address (ImageBase + RVA)."""
        return self.image_base + rva

    def va_to_rva(self, va: int) -> int:
        """Convert virtual address to RVA (VA - ImageBase)."""
        return va - self.image_base


def is_pe_binary(path: Path) -> bool:
    """Check whether a file starts with a DOS stub pointing at a PE signature.

    Only the stub and the signature are read; headers are not decoded.

    Returns:
        True if PE, False otherwise (including missing files)
    """
    try:
        with open(path, "rb") as f:
            data = f.read(0x40)
            reader = ByteReader(data)
            pe_offset = locate_pe_header(reader)
            f.seek(pe_offset)
            signature = ByteReader(f.read(4)).u32_at(0)
    except (PeFormatError, FileNotFoundError):
        return False
    return signature == PE_SIGNATURE
