"""Decode a dataset described by a manifest into Arrow/JSONL outputs."""

from __future__ import annotations

import json
from pathlib import Path

from cobrec.copybook.layout import compile_copybook
from cobrec.data.loader import decode_records
from cobrec.export import records_to_arrow, records_to_jsonl
from cobrec.manifest import load_manifest, validate_manifest


def decode_manifest(manifest_path: Path, output_dir: Path) -> dict:
    mf = load_manifest(manifest_path)
    if mf.copybook is None:
        raise RuntimeError(f"Manifest {mf.name} names no copybook")
    validation = validate_manifest(mf)
    if validation.get("warnings"):
        raise RuntimeError(f"Manifest validation warnings: {validation['warnings']}")

    layout = compile_copybook(mf.copybook.read_text(), mf.config)
    max_records = (mf.checks or {}).get("max_records")
    rows = [
        record.to_dict()
        for record in decode_records(layout, mf.path.read_bytes(), mf.framing, max_records)
    ]

    output_dir.mkdir(parents=True, exist_ok=True)
    jsonl_path = output_dir / f"{mf.name}.jsonl"
    arrow_path = output_dir / f"{mf.name}.arrow"

    records_to_jsonl(rows, jsonl_path)
    records_to_arrow(rows, arrow_path)

    return {
        "manifest": mf.name,
        "records": len(rows),
        "jsonl": str(jsonl_path),
        "arrow": str(arrow_path),
        "validation": validation,
    }


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Decode a dataset described by a manifest.")
    parser.add_argument("manifest", type=Path, help="Path to manifest (json/yaml).")
    parser.add_argument(
        "--output-dir", type=Path, default=Path("artifacts/decoded"), help="Where to write outputs."
    )
    args = parser.parse_args()

    summary = decode_manifest(args.manifest, args.output_dir)
    print(json.dumps(summary, indent=2))
