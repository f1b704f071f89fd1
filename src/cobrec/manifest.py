from __future__ import annotations

import hashlib
import html
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from cobrec.copybook.fields import DEFAULT_CODEPAGE, CodecConfig
from cobrec.copybook.layout import compile_copybook
from cobrec.data.loader import FRAMINGS, iter_records
from cobrec.errors import CopybookError

logger = logging.getLogger(__name__)


@dataclass
class Manifest:
    name: str
    path: Path
    copybook: Path | None = None
    codepage: str = DEFAULT_CODEPAGE
    framing: str = "fixed"
    lrecl: int | None = None
    trim: bool = True
    hash: str | None = None
    notes: str | None = None
    checks: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.framing not in FRAMINGS:
            raise ValueError(f"framing must be one of {FRAMINGS}, got '{self.framing}'")

    @staticmethod
    def from_mapping(payload: dict[str, Any], base: Path | None = None) -> Manifest:
        """Build a manifest; relative paths resolve against `base` when given."""

        def resolve(value: str) -> Path:
            path = Path(value).expanduser()
            return base / path if base is not None and not path.is_absolute() else path

        framing = payload.get("framing")
        if framing is None:
            # older manifests only say whether blocks are present
            framing = "bdw" if payload.get("bdw") else "fixed"
        return Manifest(
            name=str(payload["name"]),
            path=resolve(payload["path"]),
            copybook=resolve(payload["copybook"]) if payload.get("copybook") else None,
            codepage=str(payload.get("codepage", DEFAULT_CODEPAGE)),
            framing=str(framing).lower(),
            lrecl=payload.get("lrecl"),
            trim=bool(payload.get("trim", True)),
            hash=payload.get("hash"),
            notes=payload.get("notes"),
            checks=payload.get("checks"),
        )

    @property
    def config(self) -> CodecConfig:
        return CodecConfig(encoding=self.codepage, trim=self.trim)


def _hash_file(path: Path, algo: str = "sha256") -> str:
    h = hashlib.new(algo)
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return f"{algo}:{h.hexdigest()}"


def validate_manifest(manifest: Manifest) -> dict[str, Any]:
    """Check a dataset against its manifest and report what was found.

    Problems are collected as warning codes rather than raised, so one report
    covers everything wrong with the dataset.
    """
    path = manifest.path
    result: dict[str, Any] = {
        "name": manifest.name,
        "path": str(path),
        "exists": path.exists(),
        "size_bytes": path.stat().st_size if path.exists() else 0,
        "codepage": manifest.codepage,
        "framing": manifest.framing,
        "lrecl": manifest.lrecl,
        "copybook": str(manifest.copybook) if manifest.copybook else None,
        "record_length": None,
        "hash_expected": manifest.hash,
        "hash_actual": None,
        "hash_match": None,
        "records": 0,
        "decoded": 0,
        "decode_errors": [],
        "warnings": [],
    }
    if not path.exists():
        result["warnings"].append("file_missing")
        return result

    if manifest.hash:
        algo = manifest.hash.split(":", 1)[0] if ":" in manifest.hash else "sha256"
        expected = manifest.hash if ":" in manifest.hash else f"sha256:{manifest.hash}"
        actual = _hash_file(path, algo=algo)
        result["hash_actual"] = actual
        result["hash_match"] = actual == expected
        if not result["hash_match"]:
            result["warnings"].append("hash_mismatch")

    layout = None
    if manifest.copybook:
        if not manifest.copybook.exists():
            result["warnings"].append("copybook_missing")
        else:
            try:
                layout = compile_copybook(manifest.copybook.read_text(), manifest.config)
            except CopybookError as exc:
                logger.warning("copybook %s does not compile: %s", manifest.copybook, exc)
                result["warnings"].append("copybook_invalid")
                result["decode_errors"].append(str(exc))
            else:
                result["record_length"] = layout.length
                if manifest.lrecl is not None and manifest.lrecl != layout.length:
                    result["warnings"].append("lrecl_mismatch")

    length = manifest.lrecl or (layout.length if layout else None)
    if manifest.framing == "fixed" and not length:
        result["warnings"].append("record_length_unknown")
        return result

    data = path.read_bytes()
    records = [body for _length, body in iter_records(data, manifest.framing, length)]
    result["records"] = len(records)
    if manifest.framing == "fixed" and length and len(data) % length:
        result["warnings"].append("trailing_bytes")
    checks = manifest.checks or {}
    if checks.get("max_records"):
        max_rec = int(checks["max_records"])
        if len(records) > max_rec:
            result["warnings"].append("too_many_records")
        records = records[:max_rec]
        result["records_capped"] = max_rec

    if layout is not None:
        sample = int(checks.get("decode_sample", 5))
        for index, body in enumerate(records[:sample]):
            if len(body) < layout.length:
                result["decode_errors"].append(f"record {index}: {len(body)} bytes is short")
                continue
            try:
                layout.new_record(body).to_dict()
            except CopybookError as exc:
                result["decode_errors"].append(f"record {index}: {exc}")
            else:
                result["decoded"] += 1
        if result["decode_errors"]:
            result["warnings"].append("decode_errors")
    return result


def load_manifest(path: Path) -> Manifest:
    if path.suffix.lower() in {".yml", ".yaml"}:
        payload = yaml.safe_load(path.read_text())
    else:
        payload = json.loads(path.read_text())
    return Manifest.from_mapping(payload, base=path.parent)


def sample_manifest() -> dict[str, Any]:
    return {
        "name": "customers_cp037",
        "path": "data/customers.bin",
        "copybook": "copybooks/customer.cpy",
        "codepage": "cp037",
        "framing": "fixed",
        "lrecl": None,
        "trim": True,
        "hash": "sha256:<hex>",
        "notes": "edit with real details",
        "checks": {"max_records": 20000, "decode_sample": 5},
    }


def render_validation_html(result: dict[str, Any], output: Path) -> None:
    """Render a simple HTML report for validation results."""
    output.parent.mkdir(parents=True, exist_ok=True)
    warnings = result.get("warnings", [])
    rows = "".join(
        f"<tr><td>{html.escape(str(k))}</td><td>{html.escape(str(v))}</td></tr>"
        for k, v in result.items()
        if k not in {"warnings", "decode_errors"}
    )
    errors = "".join(f"<li>{html.escape(e)}</li>" for e in result.get("decode_errors") or [])
    page = f"""<!DOCTYPE html>
<html><head><title>cobrec Manifest Validation</title></head>
<body>
<h1>cobrec Manifest Validation Report</h1>
<p><strong>Name:</strong> {html.escape(str(result.get("name")))}</p>
<p><strong>Warnings:</strong> {", ".join(warnings) if warnings else "None"}</p>
<table border="1" cellpadding="4" cellspacing="0">
{rows}
</table>
<h3>Decode errors</h3>
<ul>{errors}</ul>
</body></html>
"""
    output.write_text(page)
