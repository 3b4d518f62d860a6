"""
Structural verification of decoded PE images.

The decoder accepts damaged binaries as long as their headers can be read;
PeVerifier is the stricter layer on top. It reports what the decoder
tolerated (short section or directory tables, a cut-off optional header)
along with layout problems in the section table.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .inspector import PeInspector
from .types import align_up


@dataclass
class VerificationResult:
    """Errors and warnings collected by a verification run."""

    passed: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_error(self, msg: str) -> None:
        """Add an error (verification failed)."""
        self.errors.append(msg)
        self.passed = False

    def add_warning(self, msg: str) -> None:
        """Add a warning (verification passed but with concerns)."""
        self.warnings.append(msg)

    def merge(self, other: "VerificationResult") -> None:
        """Merge another result into this one."""
        if not other.passed:
            self.passed = False
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def __str__(self) -> str:
        lines = ["Verification PASSED" if self.passed else "Verification FAILED"]

        if self.errors:
            lines.append(f"Errors ({len(self.errors)}):")
            lines.extend(f"  - {e}" for e in self.errors)

        if self.warnings:
            lines.append(f"Warnings ({len(self.warnings)}):")
            lines.extend(f"  - {w}" for w in self.warnings)

        return "\n".join(lines)


class PeVerifier:
    """PE structural verification.

    Usage:
        result = PeVerifier.verify(Path("foo.dll"))
        if not result.passed:
            print(result)
    """

    MIN_FILE_ALIGNMENT = 0x200
    MAX_FILE_ALIGNMENT = 0x10000

    def __init__(self, pe: PeInspector):
        self._pe = pe

    @classmethod
    def verify(cls, path: Path) -> VerificationResult:
        """Verify a PE file on disk.

        Raises:
            PeFormatError: If the headers cannot be decoded at all
        """
        return cls(PeInspector.load(path)).run_all_checks()

    @classmethod
    def verify_data(cls, data: bytes | bytearray) -> VerificationResult:
        """Verify PE data in memory.

        Raises:
            PeFormatError: If the headers cannot be decoded at all
        """
        return cls(PeInspector(data)).run_all_checks()

    def run_all_checks(self) -> VerificationResult:
        """Run all structural checks."""
        result = VerificationResult()

        checks: list[Callable[[], VerificationResult]] = [
            self.check_optional_header_complete,
            self.check_section_count,
            self.check_directory_count,
            self.check_no_overlapping_sections,
            self.check_section_offsets_in_bounds,
            self.check_section_alignment,
            self.check_size_of_image,
            self.check_file_alignment,
        ]

        for check in checks:
            result.merge(check())

        return result

    # =========================================================================
    # Decoder leniency
    # =========================================================================

    def check_optional_header_complete(self) -> VerificationResult:
        """Check the declared optional header size covers its fixed fields."""
        result = VerificationResult()
        opt = self._pe.optional_header
        if not opt.is_complete:
            result.add_error(
                f"SizeOfOptionalHeader {self._pe.file_header.optional_header_size} "
                f"is smaller than the {opt.width.name} fixed fields "
                f"({opt.width.fixed_size} bytes)"
            )
        return result

    def check_section_count(self) -> VerificationResult:
        """Check every declared section header was present."""
        result = VerificationResult()
        image = self._pe.image
        if image.sections_truncated:
            result.add_error(
                f"Section table truncated: {len(image.sections)} of "
                f"{image.declared_section_count} section headers present"
            )
        return result

    def check_directory_count(self) -> VerificationResult:
        """Check the data directory table was read as declared."""
        result = VerificationResult()
        opt = self._pe.optional_header
        declared = opt.number_of_rva_and_sizes
        if declared is None:
            return result

        if opt.directories_truncated:
            result.add_warning(
                f"Data directory table truncated: {len(opt.directories)} of "
                f"{declared} entries present"
            )
        elif declared != len(opt.directories):
            result.add_warning(
                f"NumberOfRvaAndSizes {declared} out of range; "
                "data directories ignored"
            )
        return result

    # =========================================================================
    # Section layout
    # =========================================================================

    def check_no_overlapping_sections(self) -> VerificationResult:
        """Check that no two sections have overlapping file regions."""
        result = VerificationResult()

        sections = [s for s in self._pe.iter_sections() if s.size_of_raw_data > 0]

        for i, sect1 in enumerate(sections):
            start1, end1 = sect1.pointer_to_raw_data, sect1.end_file_offset
            for sect2 in sections[i + 1 :]:
                start2, end2 = sect2.pointer_to_raw_data, sect2.end_file_offset
                if start1 < end2 and start2 < end1:
                    result.add_error(
                        f"Sections {sect1.name!r} and {sect2.name!r} have overlapping "
                        f"file ranges: [{start1:#x}, {end1:#x}) and [{start2:#x}, {end2:#x})"
                    )

        return result

    def check_section_offsets_in_bounds(self) -> VerificationResult:
        """Check that section raw data is within file bounds."""
        result = VerificationResult()

        file_size = self._pe.file_size

        for section in self._pe.iter_sections():
            if section.size_of_raw_data == 0:
                continue
            if section.end_file_offset > file_size:
                result.add_error(
                    f"Section {section.name!r} raw data extends beyond file: "
                    f"ends at 0x{section.end_file_offset:x}, file size is 0x{file_size:x}"
                )

        return result

    def check_section_alignment(self) -> VerificationResult:
        """Check section alignment constraints.

        - PointerToRawData must be aligned to FileAlignment
        - VirtualAddress should be aligned to SectionAlignment
        """
        result = VerificationResult()

        opt = self._pe.optional_header
        file_mask = opt.file_alignment
        sect_mask = opt.section_alignment
        if file_mask is None or sect_mask is None or file_mask < 0 or sect_mask < 0:
            return result

        for section in self._pe.iter_sections():
            if section.size_of_raw_data > 0 and section.pointer_to_raw_data & file_mask:
                result.add_error(
                    f"Section {section.name!r} PointerToRawData "
                    f"0x{section.pointer_to_raw_data:x} not aligned to "
                    f"FileAlignment 0x{file_mask + 1:x}"
                )
            if section.virtual_address & sect_mask:
                result.add_warning(
                    f"Section {section.name!r} VirtualAddress "
                    f"0x{section.virtual_address:x} not aligned to "
                    f"SectionAlignment 0x{sect_mask + 1:x}"
                )

        return result

    def check_size_of_image(self) -> VerificationResult:
        """Check SizeOfImage covers all sections."""
        result = VerificationResult()

        opt = self._pe.optional_header
        if opt.size_of_image is None or opt.section_alignment is None:
            return result

        max_rva = max((s.end_rva for s in self._pe.iter_sections()), default=0)
        expected_min = align_up(max_rva, max(opt.section_alignment, 0))

        if opt.size_of_image < expected_min:
            result.add_error(
                f"SizeOfImage 0x{opt.size_of_image:x} is smaller than "
                f"required 0x{expected_min:x} to cover all sections"
            )

        return result

    def check_file_alignment(self) -> VerificationResult:
        """Check FileAlignment is a power of 2 between 512 and 64K."""
        result = VerificationResult()

        file_align = self._pe.file_alignment
        if file_align is None:
            return result

        if file_align <= 0 or (file_align & (file_align - 1)) != 0:
            result.add_error(f"FileAlignment 0x{file_align:x} is not a power of 2")
        elif file_align < self.MIN_FILE_ALIGNMENT:
            result.add_warning(
                f"FileAlignment 0x{file_align:x} is smaller than standard 512"
            )
        elif file_align > self.MAX_FILE_ALIGNMENT:
            result.add_warning(
                f"FileAlignment 0x{file_align:x} is larger than standard 64K"
            )

        return result
