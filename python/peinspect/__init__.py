"""
peinspect: Read-only decoding of Windows PE headers.

This package decodes the DOS stub pointer, COFF file header, PE32/PE32+
optional header, data directory table and section table of a PE binary.
Directory contents (imports, resources, ...) are not parsed.

    from peinspect import decode, PeInspector

    # Decode a buffer
    image = decode(data)

    # Decode a file, with section / RVA lookups
    pe = PeInspector.load(path)
    text = pe.find_section(".text")

Truncated section and directory tables decode as partial results; see
PeImage.sections_truncated and OptionalHeader.directories_truncated.
"""

from .decoder import (
    MAX_DIRECTORY_ENTRIES,
    decode,
    locate_pe_header,
    read_file_header,
    read_optional_header,
    read_section_table,
)
from .errors import (
    CorruptSections,
    ErrorCode,
    InvalidOptionalMagic,
    InvalidPeSignature,
    InvalidStubHeader,
    PeFormatError,
    TruncatedError,
    UnsupportedArchitecture,
)
from .inspector import PeInspector, is_pe_binary
from .reader import ByteReader
from .types import (
    DataDirectory,
    FileHeader,
    Machine,
    OptionalHeader,
    OptionalHeaderWidth,
    PeImage,
    Section,
    align_down,
    align_up,
)
from .verify import PeVerifier, VerificationResult

__all__ = [
    # Decoding
    "decode",
    "locate_pe_header",
    "read_file_header",
    "read_optional_header",
    "read_section_table",
    "MAX_DIRECTORY_ENTRIES",
    "ByteReader",
    # Errors
    "PeFormatError",
    "ErrorCode",
    "InvalidStubHeader",
    "InvalidPeSignature",
    "UnsupportedArchitecture",
    "InvalidOptionalMagic",
    "CorruptSections",
    "TruncatedError",
    # Types
    "Machine",
    "OptionalHeaderWidth",
    "FileHeader",
    "OptionalHeader",
    "DataDirectory",
    "Section",
    "PeImage",
    "align_up",
    "align_down",
    # File access
    "PeInspector",
    "is_pe_binary",
    # Verification
    "PeVerifier",
    "VerificationResult",
]
