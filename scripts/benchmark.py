"""Micro-benchmarks for record encode/decode on generated data."""

from __future__ import annotations

import random
import time

from cobrec.copybook.layout import compile_copybook
from cobrec.data.loader import decode_records

COPYBOOK = """
       01 CUSTOMER.
          05 CUST-ID        PIC 9(8).
          05 CUST-NAME      PIC X(30).
          05 BALANCE        PIC S9(9)V99 COMP-3.
          05 OPENED-DAYS    PIC S9(9) COMP.
          05 HISTORY OCCURS 12 TIMES.
             10 MONTH-TOTAL PIC S9(7)V99.
             10 MONTH-TXNS  PIC 9(4) COMP.
"""


def build_dataset(records: int = 1000, seed: int = 1234) -> bytes:
    layout = compile_copybook(COPYBOOK)
    rng = random.Random(seed)
    chunks = []
    for i in range(records):
        record = layout.new_record()
        record["CUST-ID"] = 10_000 + i
        record["CUST-NAME"] = f"CUSTOMER {i}"
        record["BALANCE"] = rng.randint(-10**8, 10**8) / 100
        record["OPENED-DAYS"] = rng.randint(0, 20_000)
        for month in record["HISTORY"]:
            month["MONTH-TOTAL"] = rng.randint(0, 10**6) / 100
            month["MONTH-TXNS"] = rng.randint(0, 9999)
        chunks.append(bytes(record))
    return b"".join(chunks)


def benchmark_decode(records: int = 1000, runs: int = 3) -> dict[str, float]:
    layout = compile_copybook(COPYBOOK)
    data = build_dataset(records)
    total_bytes = len(data)
    best = None
    for _ in range(runs):
        start = time.perf_counter()
        for record in decode_records(layout, data):
            record.to_dict()
        elapsed = time.perf_counter() - start
        best = elapsed if best is None or elapsed < best else best
    mbps = (total_bytes / 1_000_000) / best if best else 0.0
    return {"records": records, "bytes": total_bytes, "best_seconds": best or 0.0, "mbps": mbps}


if __name__ == "__main__":
    result = benchmark_decode()
    print(result)
