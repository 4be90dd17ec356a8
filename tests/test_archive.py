from __future__ import annotations

import io
import struct
import zipfile

from glooko_ingest.sources.archive import extract_files, iter_entries, looks_like_zip


def _zip_bytes(entries: dict[str, str], method: int = zipfile.ZIP_DEFLATED) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=method) as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return buf.getvalue()


def _raw_entry(name: str, payload: bytes, method: int) -> bytes:
    encoded = name.encode("utf-8")
    header = struct.pack(
        "<IHHHHHIIIHH",
        0x04034B50,
        20,
        0,
        method,
        0,
        0,
        0,
        len(payload),
        len(payload),
        len(encoded),
        0,
    )
    return header + encoded + payload


def test_extract_files_returns_only_csv_entries() -> None:
    data = _zip_bytes(
        {
            "cgm_data_1.csv": "Timestamp,Glucose\n2024-01-15 08:00:00,120\n",
            "readme.txt": "ignore me",
            "Bolus_Data_1.CSV": "Timestamp,Insulin Delivered (U)\n",
        }
    )

    files = extract_files(data)

    assert [f.name for f in files] == ["cgm_data_1.csv", "Bolus_Data_1.CSV"]
    assert files[0].content.startswith("Timestamp,Glucose")


def test_extract_files_handles_stored_entries() -> None:
    data = _zip_bytes({"notes_data_1.csv": "Timestamp,Value\n"}, zipfile.ZIP_STORED)
    files = extract_files(data)
    assert len(files) == 1
    assert files[0].content == "Timestamp,Value\n"


def test_truncated_archive_keeps_complete_entries() -> None:
    data = _zip_bytes(
        {
            "cgm_data_1.csv": "Timestamp,Glucose\n2024-01-15 08:00:00,120\n" * 20,
            "bolus_data_1.csv": "Timestamp,Insulin Delivered (U)\n" * 20,
        }
    )
    second = data.find(b"PK\x03\x04", 4)
    assert second > 0

    files = extract_files(data[: second + 50])

    assert [f.name for f in files] == ["cgm_data_1.csv"]


def test_unsupported_method_is_skipped_and_walk_continues() -> None:
    data = _raw_entry("alarms_data_1.csv", b"\x00\x01\x02", 12) + _raw_entry(
        "carbs_data_1.csv", b"Timestamp,Carbs (g)\n", 0
    )

    files = extract_files(data)

    assert [f.name for f in files] == ["carbs_data_1.csv"]


def test_corrupt_deflate_payload_is_skipped() -> None:
    data = _raw_entry("cgm_data_1.csv", b"not deflate data", 8)
    assert extract_files(data) == []


def test_garbage_and_empty_buffers_yield_nothing() -> None:
    assert extract_files(b"") == []
    assert extract_files(b"this is not a zip file at all, just text") == []
    assert list(iter_entries(b"PK\x03\x04short")) == []


def test_iter_entries_reports_header_fields() -> None:
    data = _raw_entry("food_data_1.csv", b"abc", 0)
    [(header, payload)] = list(iter_entries(data))
    assert header.name == "food_data_1.csv"
    assert header.method == 0
    assert header.compressed_size == 3
    assert header.data_offset == 30 + len("food_data_1.csv")
    assert payload == b"abc"


def test_looks_like_zip() -> None:
    assert looks_like_zip(_zip_bytes({"a.csv": "x"}))
    assert not looks_like_zip(b"Timestamp,Glucose")
