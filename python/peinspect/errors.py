"""
Error taxonomy for PE decoding.

Every terminal decode outcome maps to exactly one PeFormatError subclass,
each tagged with an ErrorCode so callers can report failures distinctly
without matching on exception types.
"""

import enum


class ErrorCode(enum.Enum):
    """Terminal decode outcomes."""

    INVALID_STUB_HEADER = "InvalidStubHeader"
    INVALID_PE_SIGNATURE = "InvalidPeSignature"
    UNSUPPORTED_ARCHITECTURE = "UnsupportedArchitecture"
    INVALID_OPTIONAL_MAGIC = "InvalidOptionalMagic"
    CORRUPT_SECTIONS = "CorruptSections"
    TRUNCATED = "Truncated"


class PeFormatError(ValueError):
    """Base class for all PE decode failures."""

    code: ErrorCode


class InvalidStubHeader(PeFormatError):
    """The first two bytes are not the DOS "MZ" signature."""

    code = ErrorCode.INVALID_STUB_HEADER


class InvalidPeSignature(PeFormatError):
    """The four bytes at the resolved PE offset are not "PE\\0\\0"."""

    code = ErrorCode.INVALID_PE_SIGNATURE


class UnsupportedArchitecture(PeFormatError):
    """The machine field is not one of the supported architectures."""

    code = ErrorCode.UNSUPPORTED_ARCHITECTURE

    def __init__(self, machine: int):
        super().__init__(f"Unsupported machine type 0x{machine:04X}")
        self.machine = machine


class InvalidOptionalMagic(PeFormatError):
    """The optional header magic is neither PE32 nor PE32+."""

    code = ErrorCode.INVALID_OPTIONAL_MAGIC

    def __init__(self, magic: int):
        super().__init__(
            f"Invalid optional header magic 0x{magic:04X} "
            "(expected 0x010B or 0x020B)"
        )
        self.magic = magic


class CorruptSections(PeFormatError):
    """Fewer section headers were parsed than the file header declares.

    The decoder treats a short section table as partial success; this error
    is only raised for callers that ask for a complete table.
    """

    code = ErrorCode.CORRUPT_SECTIONS

    def __init__(self, declared: int, parsed: int):
        super().__init__(
            f"Section table truncated: {parsed} of {declared} section headers present"
        )
        self.declared = declared
        self.parsed = parsed


class TruncatedError(PeFormatError):
    """A mandatory fixed-width read ran past the end of the data."""

    code = ErrorCode.TRUNCATED

    def __init__(self, offset: int, needed: int, available: int):
        super().__init__(
            f"Data too short: need {needed} bytes at offset 0x{offset:x}, "
            f"{available} available"
        )
        self.offset = offset
        self.needed = needed
        self.available = available

    @property
    def end(self) -> int:
        """Offset one past the last byte the failed read wanted."""
        return self.offset + self.needed
