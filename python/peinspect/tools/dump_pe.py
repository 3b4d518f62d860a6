#!/usr/bin/env python3
"""
PE header dump CLI tool.

Prints the COFF header, optional header, data directories and section table
of a PE binary. Optionally runs structural verification and writes a
msgpack-encoded summary of the decoded headers.

Usage:
    python -m peinspect.tools.dump_pe <binary> [--verbose] [--verify]
        [--summary-out FILE]
"""

import argparse
import logging
import sys
from pathlib import Path

import msgpack

from peinspect import PeFormatError, PeImage, PeInspector, PeVerifier

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_VERIFY_FAILED = 1
EXIT_DECODE_FAILED = 2


def image_summary(image: PeImage) -> dict:
    """Flatten a decoded image into msgpack/JSON-friendly primitives.

    Alignments are reported as their declared values, not masks.
    """
    fh = image.file_header
    opt = image.optional_header

    def unmask(mask: int | None) -> int | None:
        return None if mask is None else mask + 1

    return {
        "pe_offset": image.pe_offset,
        "file_header": {
            "machine": fh.machine.name,
            "number_of_sections": fh.number_of_sections,
            "timestamp": fh.raw_timestamp,
            "timestamp_utc": fh.timestamp.isoformat(),
            "optional_header_size": fh.optional_header_size,
            "characteristics": fh.characteristics,
        },
        "optional_header": {
            "width": opt.width.name,
            "complete": opt.is_complete,
            "code_size": opt.code_size,
            "entry_point": opt.entry_point,
            "code_base": opt.code_base,
            "data_base": opt.data_base,
            "image_base": opt.image_base,
            "section_alignment": unmask(opt.section_alignment),
            "file_alignment": unmask(opt.file_alignment),
            "size_of_image": opt.size_of_image,
            "size_of_headers": opt.size_of_headers,
            "subsystem": opt.subsystem,
            "dll_characteristics": opt.dll_characteristics,
            "number_of_rva_and_sizes": opt.number_of_rva_and_sizes,
        },
        "directories": [
            {"name": d.name, "virtual_address": d.virtual_address, "size": d.size}
            for d in opt.directories
        ],
        "directories_truncated": opt.directories_truncated,
        "sections": [
            {
                "name": s.name,
                "raw_name": s.raw_name,
                "virtual_size": s.virtual_size,
                "virtual_address": s.virtual_address,
                "size_of_raw_data": s.size_of_raw_data,
                "pointer_to_raw_data": s.pointer_to_raw_data,
                "characteristics": s.characteristics,
            }
            for s in image.sections
        ],
        "sections_truncated": image.sections_truncated,
    }


def _fmt(value: int | None, width: int = 8) -> str:
    if value is None:
        return "-"
    return f"0x{value:0{width}x}"


def print_image(pe: PeInspector) -> None:
    """Print a human-readable dump of the decoded headers."""
    image = pe.image
    fh = image.file_header
    opt = image.optional_header

    print(f"PE header offset:   {_fmt(image.pe_offset)}")
    print(f"Machine:            {fh.machine.name}")
    print(f"NumberOfSections:   {fh.number_of_sections}")
    print(f"TimeDateStamp:      {fh.timestamp.isoformat()}")
    print(f"Opt header size:    {_fmt(fh.optional_header_size, 4)}")
    print(f"Characteristics:    {_fmt(fh.characteristics, 4)}")
    print("-" * 60)
    print(f"Format:             {'PE32+' if opt.is_64bit else 'PE32'}")
    if not opt.is_complete:
        print("  (optional header cut short by its declared size)")
    print(f"Code size:          {_fmt(opt.code_size)}")
    print(f"Entry point:        {_fmt(opt.entry_point)}")
    print(f"Code base:          {_fmt(opt.code_base)}")
    print(f"Data base:          {_fmt(opt.data_base)}")
    print(f"Image base:         {_fmt(opt.image_base, 16 if opt.is_64bit else 8)}")
    print(f"Section alignment:  {_fmt(pe.section_alignment)}")
    print(f"File alignment:     {_fmt(pe.file_alignment)}")
    print(f"Size of image:      {_fmt(opt.size_of_image)}")
    print(f"Size of headers:    {_fmt(opt.size_of_headers)}")

    if opt.directories:
        print("-" * 60)
        print("Data directories:")
        for d in opt.directories:
            print(f"  {d.index:2d} {d.name:<14} {_fmt(d.virtual_address)} {_fmt(d.size)}")
        if opt.directories_truncated:
            print(
                f"  (truncated: {len(opt.directories)} of "
                f"{opt.number_of_rva_and_sizes} entries)"
            )

    print("-" * 60)
    print("Sections:")
    for i, s in enumerate(image.sections):
        name = s.name if not s.has_long_name else s.raw_name.rstrip(b"\x00").decode(
            "ascii", errors="replace"
        )
        print(
            f"  {i:2d} {name:<8} va={_fmt(s.virtual_address)} vsize={_fmt(s.virtual_size)} "
            f"raw={_fmt(s.pointer_to_raw_data)} rawsize={_fmt(s.size_of_raw_data)} "
            f"flags={_fmt(s.characteristics)}"
        )
    if image.sections_truncated:
        print(
            f"  (truncated: {len(image.sections)} of "
            f"{image.declared_section_count} section headers present)"
        )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Dump PE/COFF headers and the section table of a Windows binary"
    )
    parser.add_argument("binary", type=Path, help="Path to PE binary")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show debug logging and verification warnings",
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Run structural verification after decoding",
    )
    parser.add_argument(
        "--summary-out",
        type=Path,
        default=None,
        help="Write a msgpack summary of the decoded headers to this file",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.binary.exists():
        print(f"Error: {args.binary} does not exist", file=sys.stderr)
        return EXIT_DECODE_FAILED

    try:
        pe = PeInspector.load(args.binary)
    except PeFormatError as e:
        print(f"Error [{e.code.value}]: {args.binary}: {e}", file=sys.stderr)
        return EXIT_DECODE_FAILED

    print(f"-- {args.binary}")
    print_image(pe)

    if args.summary_out is not None:
        args.summary_out.write_bytes(msgpack.packb(image_summary(pe.image)))
        logger.debug("Wrote summary to %s", args.summary_out)

    if args.verify:
        result = PeVerifier(pe).run_all_checks()
        print("-" * 60)
        print("PASSED" if result.passed else "FAILED")
        for e in result.errors:
            print(f"  ERROR: {e}")
        if args.verbose:
            for w in result.warnings:
                print(f"  WARN: {w}")
        if not result.passed:
            return EXIT_VERIFY_FAILED

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
