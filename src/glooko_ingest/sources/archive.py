"""Lectura de entradas de un ZIP recorriendo las cabeceras locales."""

from __future__ import annotations

import logging
import struct
import zlib
from collections.abc import Iterator
from dataclasses import dataclass

from glooko_ingest.model import ExtractedFile

logger = logging.getLogger(__name__)

LOCAL_HEADER_SIGNATURE = 0x04034B50
LOCAL_HEADER_SIZE = 30
METHOD_STORED = 0
METHOD_DEFLATE = 8

# signature, version, flags, method, mtime, mdate, crc32,
# compressed size, uncompressed size, name length, extra length
_HEADER = struct.Struct("<IHHHHHIIIHH")


@dataclass(frozen=True)
class ZipEntryHeader:
    """Fields of one local file header."""

    offset: int
    name: str
    method: int
    compressed_size: int
    uncompressed_size: int
    data_offset: int


def iter_entries(buffer: bytes) -> Iterator[tuple[ZipEntryHeader, bytes]]:
    """Yield ``(header, compressed payload)`` for each complete local entry.

    Stops at the first position without a local header signature, when fewer
    than one header's worth of bytes remain, or when a name/payload would run
    past the end of the buffer.
    """
    view = memoryview(buffer)
    size = len(view)
    offset = 0
    while size - offset >= LOCAL_HEADER_SIZE:
        (
            signature,
            _version,
            _flags,
            method,
            _mtime,
            _mdate,
            _crc,
            compressed_size,
            uncompressed_size,
            name_len,
            extra_len,
        ) = _HEADER.unpack_from(view, offset)
        if signature != LOCAL_HEADER_SIGNATURE:
            break

        name_start = offset + LOCAL_HEADER_SIZE
        data_offset = name_start + name_len + extra_len
        data_end = data_offset + compressed_size
        if data_end > size:
            logger.warning(
                "Truncated ZIP entry at offset %d (needs %d bytes, have %d)",
                offset,
                data_end,
                size,
            )
            break

        name = bytes(view[name_start : name_start + name_len]).decode(
            "utf-8", errors="replace"
        )
        header = ZipEntryHeader(
            offset=offset,
            name=name,
            method=method,
            compressed_size=compressed_size,
            uncompressed_size=uncompressed_size,
            data_offset=data_offset,
        )
        yield header, bytes(view[data_offset:data_end])
        offset = data_end


def _decompress(header: ZipEntryHeader, payload: bytes) -> bytes | None:
    if header.method == METHOD_STORED:
        return payload
    if header.method == METHOD_DEFLATE:
        try:
            return zlib.decompress(payload, -zlib.MAX_WBITS)
        except zlib.error as exc:
            logger.warning("Failed to decompress %s: %s", header.name, exc)
            return None
    logger.warning(
        "Unsupported compression method %d for %s", header.method, header.name
    )
    return None


def extract_files(buffer: bytes, suffix: str = ".csv") -> list[ExtractedFile]:
    """Decompress every entry whose name ends with ``suffix``.

    Args:
        buffer: Raw archive bytes.
        suffix: Case-insensitive file-name suffix to keep.

    Returns:
        Extracted files in archive order; empty when nothing matches.
    """
    out: list[ExtractedFile] = []
    wanted = suffix.lower()
    for header, payload in iter_entries(buffer):
        logger.debug(
            "ZIP entry %s (method=%d, compressed=%d, uncompressed=%d)",
            header.name,
            header.method,
            header.compressed_size,
            header.uncompressed_size,
        )
        if not header.name.lower().endswith(wanted):
            continue
        data = _decompress(header, payload)
        if data is None:
            continue
        content = data.decode("utf-8", errors="replace")
        out.append(ExtractedFile(name=header.name, content=content))
        logger.debug("Extracted %s: %d bytes", header.name, len(data))
    return out


def looks_like_zip(buffer: bytes) -> bool:
    """True when the buffer starts with a local header signature."""
    return buffer[:4] == b"PK\x03\x04"
