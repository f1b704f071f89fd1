"""Split record files into record bodies.

Three framings are supported:
- fixed: back-to-back records of the layout length (RECFM=F/FB)
- RDW: each record prefixed by a 4-byte record descriptor word (RECFM=V)
- BDW: blocks with a 4-byte block descriptor word, each holding RDW records (RECFM=VB)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from cobrec.copybook.layout import Layout
from cobrec.copybook.record import Record

logger = logging.getLogger(__name__)

FRAMINGS = ("fixed", "rdw", "bdw")


def rdw_prefix(body: bytes) -> bytes:
    """RDW: 2-byte length (including RDW) + 2-byte reserved."""
    length = len(body) + 4
    return length.to_bytes(2, "big") + b"\x00\x00"


def bdw_prefix(block: bytes) -> bytes:
    """BDW: 4-byte length including the descriptor itself."""
    return (len(block) + 4).to_bytes(4, "big")


def iter_fixed_records(data: bytes, length: int) -> Iterable[tuple[int, bytes]]:
    """Iterate fixed-length records, yielding (length, body)."""
    if length <= 0:
        raise ValueError(f"record length must be positive, got {length}")
    full = len(data) - len(data) % length
    for idx in range(0, full, length):
        yield length, data[idx : idx + length]
    if full != len(data):
        logger.warning("ignoring %d trailing bytes after the last full record", len(data) - full)


def iter_records_with_rdw(dataset: bytes) -> Iterable[tuple[int, bytes]]:
    """Iterate over RDW-prefixed records, yielding (length, body)."""
    idx = 0
    total = len(dataset)
    while idx + 4 <= total:
        length = int.from_bytes(dataset[idx : idx + 2], "big")
        if length < 4 or idx + length > total:
            logger.warning("stopping at offset %d: bad RDW length %d", idx, length)
            break
        yield length, dataset[idx + 4 : idx + length]
        idx += length


def iter_bdw_records(data: bytes) -> Iterable[tuple[int, bytes]]:
    """Iterate BDW-wrapped VB datasets: each block has a 4-byte length prefix."""
    idx = 0
    total = len(data)
    while idx + 4 <= total:
        block_len = int.from_bytes(data[idx : idx + 4], "big")
        if block_len < 4 or idx + block_len > total:
            logger.warning("stopping at offset %d: bad BDW length %d", idx, block_len)
            break
        yield from iter_records_with_rdw(data[idx + 4 : idx + block_len])
        idx += block_len


def iter_records(
    data: bytes, framing: str = "fixed", length: int | None = None
) -> Iterable[tuple[int, bytes]]:
    if framing == "fixed":
        if length is None:
            raise ValueError("fixed framing needs a record length")
        return iter_fixed_records(data, length)
    if framing == "rdw":
        return iter_records_with_rdw(data)
    if framing == "bdw":
        return iter_bdw_records(data)
    raise ValueError(f"unknown framing '{framing}', expected one of {FRAMINGS}")


def load_records(
    path: Path, framing: str = "fixed", length: int | None = None
) -> list[tuple[int, bytes]]:
    """Load fixed, RDW or BDW+RDW records from disk."""
    return list(iter_records(path.read_bytes(), framing, length))


def decode_records(
    layout: Layout,
    data: bytes,
    framing: str = "fixed",
    max_records: int | None = None,
) -> Iterator[Record]:
    """Bind a record accessor to every record in `data`.

    Variable-length bodies shorter than the layout are padded with low-values,
    longer ones are truncated to the layout length.
    """
    records = iter_records(data, framing, layout.length)
    for index, (_length, body) in enumerate(records):
        if max_records is not None and index >= max_records:
            break
        if len(body) != layout.length:
            logger.debug("record %d is %d bytes, layout is %d", index, len(body), layout.length)
            body = body[: layout.length].ljust(layout.length, b"\x00")
        yield layout.new_record(body)


def write_records(records: Iterable[bytes], framing: str = "fixed") -> bytes:
    """Join record bodies with the framing `iter_records` reads back."""
    bodies = [bytes(body) for body in records]
    if framing == "fixed":
        return b"".join(bodies)
    framed = b"".join(rdw_prefix(body) + body for body in bodies)
    if framing == "rdw":
        return framed
    if framing == "bdw":
        return bdw_prefix(framed) + framed
    raise ValueError(f"unknown framing '{framing}', expected one of {FRAMINGS}")
