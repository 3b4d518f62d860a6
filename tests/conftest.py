import pytest
import pathlib

from pe_test_utils import build_pe


@pytest.fixture
def pe32_bytes() -> bytes:
    """Well-formed PE32 image with two sections and 16 data directories."""
    return bytes(build_pe())


@pytest.fixture
def pe64_bytes() -> bytes:
    """Well-formed PE32+ image with two sections and 16 data directories."""
    return bytes(build_pe(pe64=True, image_base=0x140000000))


@pytest.fixture
def pe32_file(pe32_bytes: bytes, tmp_path: pathlib.Path) -> pathlib.Path:
    """PE32 image written to disk."""
    path = tmp_path / "sample32.exe"
    path.write_bytes(pe32_bytes)
    return path


@pytest.fixture
def pe64_file(pe64_bytes: bytes, tmp_path: pathlib.Path) -> pathlib.Path:
    """PE32+ image written to disk."""
    path = tmp_path / "sample64.dll"
    path.write_bytes(pe64_bytes)
    return path


@pytest.fixture
def short_section_table_bytes() -> bytes:
    """PE32 image declaring 5 sections with only 2 headers before end of file.

    Mirrors hand-crafted binaries whose NumberOfSections is larger than the
    section table actually present.
    """
    return bytes(build_pe(number_of_sections=5, pad_to_raw_data=False))
