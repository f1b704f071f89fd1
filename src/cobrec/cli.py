import codecs
import logging
from dataclasses import asdict
from pathlib import Path
from typing import NoReturn

import orjson
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from cobrec.copybook.fields import DEFAULT_CODEPAGE, CodecConfig
from cobrec.copybook.layout import Layout, compile_copybook
from cobrec.data.loader import decode_records
from cobrec.errors import CopybookError
from cobrec.export import dumps, records_to_arrow, records_to_json, records_to_jsonl
from cobrec.manifest import (
    load_manifest,
    render_validation_html,
    sample_manifest,
    validate_manifest,
)

app = typer.Typer(help="Compile COBOL copybooks and read or write the records they describe.")
manifest_app = typer.Typer(help="Dataset manifest helpers (validation, templates).")
console = Console()
SUPPORTED_FORMATS = {"json", "jsonl", "arrow"}

app.add_typer(manifest_app, name="manifest")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _read_bytes(path: Path) -> bytes:
    if not path.is_file():
        raise typer.BadParameter(f"Input file not found: {path}")
    return path.read_bytes()


def _config(codepage: str, trim: bool = True) -> CodecConfig:
    try:
        codecs.lookup(codepage)
    except LookupError as exc:
        raise typer.BadParameter(f"Unknown codepage '{codepage}'") from exc
    return CodecConfig(encoding=codepage, trim=trim)


def _compile(copybook: Path, config: CodecConfig) -> Layout:
    if not copybook.is_file():
        raise typer.BadParameter(f"Copybook not found: {copybook}")
    try:
        return compile_copybook(copybook.read_text(), config)
    except CopybookError as exc:
        _fail(exc)


def _fail(exc: CopybookError) -> NoReturn:
    console.print(f"[bold red]Error:[/] {escape(str(exc))}")
    raise typer.Exit(code=1)


@app.command()
def layout(
    copybook: Path = typer.Argument(..., help="Copybook to compile."),
    as_json: bool = typer.Option(False, "--json", help="Emit the layout as JSON."),
) -> None:
    """Show the offset, length and type of every field in a copybook."""
    compiled = _compile(copybook, CodecConfig())
    entries = list(compiled.iter_fields())
    if as_json:
        payload = {
            "record_length": compiled.length,
            "fields": [asdict(entry) for entry in entries],
        }
        console.print_json(orjson.dumps(payload).decode())
        return

    table = Table(title=f"{copybook.name} ({compiled.length} bytes)")
    table.add_column("Field")
    table.add_column("Offset", justify="right")
    table.add_column("Length", justify="right")
    table.add_column("Type")
    table.add_column("Occurs", justify="right")
    table.add_column("Redefines")
    for entry in entries:
        table.add_row(
            "  " * entry.depth + entry.path.rsplit(".", 1)[-1],
            str(entry.offset),
            str(entry.length),
            entry.picture or entry.kind,
            str(entry.occurs) if entry.occurs else "",
            entry.redefines or "",
        )
    console.print(table)


@app.command()
def decode(
    copybook: Path = typer.Argument(..., help="Copybook describing each record."),
    input: Path = typer.Argument(..., help="Record file to decode."),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Optional path to write structured output."
    ),
    format: str = typer.Option(
        "json", "--format", "-f", help="Output format: json | jsonl | arrow."
    ),
    codepage: str = typer.Option(DEFAULT_CODEPAGE, "--codepage", "-p", help="Text codepage."),
    rdw: bool = typer.Option(False, "--rdw", help="Records carry a 4-byte RDW prefix."),
    bdw: bool = typer.Option(False, "--bdw", help="Records are grouped in BDW blocks."),
    max_records: int | None = typer.Option(
        None, "--max-records", help="Limit number of records decoded."
    ),
    no_trim: bool = typer.Option(False, "--no-trim", help="Keep trailing spaces in text fields."),
) -> None:
    """Decode every record of a file into nested JSON objects."""
    fmt = format.lower()
    if fmt not in SUPPORTED_FORMATS:
        raise typer.BadParameter(f"Unsupported format '{format}'. Choose from {SUPPORTED_FORMATS}.")
    if rdw and bdw:
        raise typer.BadParameter("--rdw and --bdw are mutually exclusive")
    if fmt == "arrow" and output is None:
        raise typer.BadParameter("Arrow output needs --output")
    framing = "bdw" if bdw else "rdw" if rdw else "fixed"

    compiled = _compile(copybook, _config(codepage, trim=not no_trim))
    data = _read_bytes(input)
    try:
        rows = [
            record.to_dict()
            for record in decode_records(compiled, data, framing=framing, max_records=max_records)
        ]
    except CopybookError as exc:
        _fail(exc)

    if output is None:
        console.print_json(dumps(rows).decode())
        return
    writers = {"json": records_to_json, "jsonl": records_to_jsonl, "arrow": records_to_arrow}
    count = writers[fmt](rows, output)
    console.print(f"[bold green]Wrote[/] {count} records to {output}")


@app.command()
def encode(
    copybook: Path = typer.Argument(..., help="Copybook describing the record."),
    output: Path = typer.Argument(..., help="Path to write the encoded record."),
    assignments: list[str] | None = typer.Option(
        None, "--set", "-s", help="Field assignment NAME=VALUE (repeatable)."
    ),
    codepage: str = typer.Option(DEFAULT_CODEPAGE, "--codepage", "-p", help="Text codepage."),
) -> None:
    """Write one record built from VALUE defaults and the given assignments."""
    values: dict[str, str] = {}
    for entry in assignments or []:
        if "=" not in entry:
            raise typer.BadParameter("Assignments must be NAME=VALUE")
        name, value = entry.split("=", 1)
        values[name.strip()] = value

    compiled = _compile(copybook, _config(codepage))
    record = compiled.new_record()
    try:
        record.update(values)
    except CopybookError as exc:
        _fail(exc)
    output.write_bytes(bytes(record))
    console.print(f"[bold green]Wrote[/] {compiled.length} bytes to {output}")


@manifest_app.command("validate")
def manifest_validate(
    manifest: Path = typer.Argument(..., help="Manifest file (yaml or json)."),
    html: Path | None = typer.Option(None, "--html", help="Optional path to an HTML report."),
) -> None:
    """Check a dataset against its manifest: hash, framing, record length, sample decode."""
    if not manifest.is_file():
        raise typer.BadParameter(f"Manifest not found: {manifest}")
    try:
        loaded = load_manifest(manifest)
    except (KeyError, ValueError) as exc:
        raise typer.BadParameter(f"Invalid manifest {manifest}: {exc}") from exc
    result = validate_manifest(loaded)
    console.print_json(orjson.dumps(result).decode())
    if html:
        render_validation_html(result, html)
        console.print(f"[bold green]Wrote HTML report[/] to {html}")
    if result["warnings"]:
        raise typer.Exit(code=1)


@manifest_app.command("sample")
def manifest_sample() -> None:
    """Print a manifest template to edit."""
    console.print_json(orjson.dumps(sample_manifest()).decode())


if __name__ == "__main__":
    app()
