"""Form parsing and PDF processing steps for the merge, split, flatten,
convert and metadata operations."""

from __future__ import annotations

import json
import os
import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Sequence

from pdfrelay.engine import (
    SPLIT_MODE_INTERVALS,
    SPLIT_MODE_PAGES,
    Context,
    ContextCancelledError,
    PdfEngine,
    PdfEngineError,
    PdfFormats,
    SplitMode,
)

_PDF_EXTENSIONS = (".pdf",)
_TRUE_VALUES = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_VALUES = frozenset({"0", "f", "F", "FALSE", "false", "False"})
_INTEGER = re.compile(r"[+-]?\d+")


class FormError(ValueError):
    """Invalid or missing form data; maps to a client error."""

    status = 400

    def __init__(self, message: str, errors: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.errors = list(errors) or [message]


@dataclass
class Workspace:
    """A working directory holding the files of one request."""

    directory: str

    def generate_path(self, extension: str) -> str:
        """A fresh, unused path in the workspace with the given extension."""
        return os.path.join(self.directory, f"{uuid.uuid4()}{extension}")

    def create_sub_directory(self, name: str) -> str:
        """Create (if needed) a sub-directory and return its path."""
        path = os.path.join(self.directory, name)
        os.makedirs(path, exist_ok=True)
        return path

    def rename(self, source: str, destination: str) -> None:
        """Move a file, replacing the destination if it exists."""
        os.replace(source, destination)


def _parse_bool(value: str) -> bool:
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean '{value}'")


class _FormReader:
    """Reads form fields and gathers every validation error."""

    def __init__(self, form: Mapping[str, str] | None) -> None:
        self._values = dict(form or {})
        self._errors: list[str] = []

    def _get(self, key: str) -> str:
        return self._values.get(key, "") or ""

    def _invalid(self, key: str, value: str, exc: Exception) -> None:
        self._errors.append(f"form field '{key}' is invalid (got '{value}', resulting to {exc})")

    def custom(self, key: str, assign: Callable[[str], None]) -> None:
        value = self._get(key)
        try:
            assign(value)
        except ValueError as exc:
            self._invalid(key, value, exc)

    def mandatory_custom(self, key: str, assign: Callable[[str], None]) -> None:
        if not self._get(key):
            self._errors.append(f"form field '{key}' is required")
            return
        self.custom(key, assign)

    def string(self, key: str, default: str = "") -> str:
        return self._get(key) or default

    def boolean(self, key: str, default: bool = False) -> bool:
        value = self._get(key)
        if not value:
            return default
        try:
            return _parse_bool(value)
        except ValueError as exc:
            self._invalid(key, value, exc)
            return default

    def mandatory_paths(self, paths: Sequence[str], extensions: Sequence[str]) -> list[str]:
        matched = [path for path in paths if os.path.splitext(path)[1].lower() in extensions]
        if not matched:
            self._errors.append(f"no form file found for extensions: [{' '.join(extensions)}]")
        return matched

    def validate(self) -> None:
        if self._errors:
            raise FormError("; ".join(self._errors), self._errors)


@contextmanager
def _step(prefix: str) -> Iterator[None]:
    try:
        yield
    except (ContextCancelledError, FormError):
        raise
    except Exception as exc:
        raise PdfEngineError(f"{prefix}: {exc}", causes=[exc]) from exc


def _read_split_mode(reader: _FormReader, mandatory: bool) -> SplitMode:
    state: dict[str, Any] = {"mode": "", "span": ""}

    def assign_mode(value: str) -> None:
        if value and value not in (SPLIT_MODE_INTERVALS, SPLIT_MODE_PAGES):
            raise ValueError(
                f"wrong value, expected either '{SPLIT_MODE_INTERVALS}' or '{SPLIT_MODE_PAGES}'"
            )
        state["mode"] = value

    def assign_span(value: str) -> None:
        value = "".join(value.split())
        if state["mode"] == SPLIT_MODE_INTERVALS:
            if not _INTEGER.fullmatch(value):
                raise ValueError(f"invalid integer '{value}'")
            if int(value) < 1:
                raise ValueError("value is inferior to 1")
        state["span"] = value

    read = reader.mandatory_custom if mandatory else reader.custom
    read("splitMode", assign_mode)
    read("splitSpan", assign_span)

    unify = reader.boolean("splitUnify", False)

    def check_unify(value: str) -> None:
        if value and unify and state["mode"] != SPLIT_MODE_PAGES:
            raise ValueError(f"unify is not available for split mode '{state['mode']}'")

    reader.custom("splitUnify", check_unify)
    return SplitMode(mode=state["mode"], span=state["span"], unify=unify)


def _read_formats(reader: _FormReader) -> PdfFormats:
    return PdfFormats(pdf_a=reader.string("pdfa", ""), pdf_ua=reader.boolean("pdfua", False))


def _read_metadata(reader: _FormReader, mandatory: bool) -> dict[str, Any]:
    result: dict[str, Any] = {}

    def assign(value: str) -> None:
        if not value:
            return
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"unmarshal metadata: {exc}") from exc
        if parsed is None:
            return
        if not isinstance(parsed, dict):
            raise ValueError("unmarshal metadata: expected a JSON object")
        result.update(parsed)

    (reader.mandatory_custom if mandatory else reader.custom)("metadata", assign)
    return result


def form_data_pdf_split_mode(form: Mapping[str, str], mandatory: bool) -> SplitMode:
    """Build a SplitMode from the splitMode, splitSpan and splitUnify fields."""
    reader = _FormReader(form)
    mode = _read_split_mode(reader, mandatory)
    reader.validate()
    return mode


def form_data_pdf_formats(form: Mapping[str, str]) -> PdfFormats:
    """Build PdfFormats from the pdfa and pdfua fields."""
    reader = _FormReader(form)
    formats = _read_formats(reader)
    reader.validate()
    return formats


def form_data_pdf_metadata(form: Mapping[str, str], mandatory: bool) -> dict[str, Any]:
    """Parse the JSON object of the metadata field."""
    reader = _FormReader(form)
    metadata = _read_metadata(reader, mandatory)
    reader.validate()
    return metadata


def merge_stub(ctx: Context, workspace: Workspace, engine: PdfEngine, input_paths: Sequence[str]) -> str:
    """Merge the PDFs; a single input is returned as is."""
    if not input_paths:
        raise ValueError("no input paths")
    if len(input_paths) == 1:
        return input_paths[0]

    output_path = workspace.generate_path(".pdf")
    with _step(f"merge {len(input_paths)} PDFs"):
        engine.merge(ctx, list(input_paths), output_path)
    return output_path


def split_pdf_stub(
    ctx: Context,
    workspace: Workspace,
    engine: PdfEngine,
    mode: SplitMode,
    input_paths: Sequence[str],
) -> list[str]:
    """Split each PDF, keeping the original filename; no mode returns the inputs."""
    if mode.is_empty():
        return list(input_paths)

    unified = mode.unify and mode.mode == SPLIT_MODE_PAGES
    output_paths: list[str] = []
    for input_path in input_paths:
        filename_no_ext = os.path.basename(os.path.splitext(input_path)[0])
        with _step("create subdirectory from input path"):
            output_dir_path = workspace.create_sub_directory(filename_no_ext.replace(".", "_"))

        with _step(f"split PDF '{input_path}'"):
            paths = engine.split(ctx, mode, input_path, output_dir_path)

        for index, path in enumerate(paths):
            if unified:
                new_path = f"{output_dir_path}/{filename_no_ext}.pdf"
            else:
                new_path = f"{output_dir_path}/{filename_no_ext}_{index}.pdf"
            with _step("rename path"):
                workspace.rename(path, new_path)
            output_paths.append(new_path)
            if unified:
                break

    return output_paths


def flatten_stub(ctx: Context, engine: PdfEngine, input_paths: Sequence[str]) -> None:
    """Flatten the annotations of every PDF in place."""
    for input_path in input_paths:
        with _step(f"flatten '{input_path}'"):
            engine.flatten(ctx, input_path)


def convert_stub(
    ctx: Context,
    workspace: Workspace,
    engine: PdfEngine,
    formats: PdfFormats,
    input_paths: Sequence[str],
) -> list[str]:
    """Convert every PDF to the formats; no format returns the inputs."""
    if formats.is_empty():
        return list(input_paths)

    output_paths: list[str] = []
    for input_path in input_paths:
        output_path = workspace.generate_path(".pdf")
        with _step(f"convert '{input_path}'"):
            engine.convert(ctx, formats, input_path, output_path)
        output_paths.append(output_path)
    return output_paths


def write_metadata_stub(
    ctx: Context,
    engine: PdfEngine,
    metadata: Mapping[str, Any] | None,
    input_paths: Sequence[str],
) -> None:
    """Write the metadata into every PDF; no metadata does nothing."""
    if not metadata:
        return
    for input_path in input_paths:
        with _step(f"write metadata into '{input_path}'"):
            engine.write_metadata(ctx, dict(metadata), input_path)


def merge_pdfs(
    ctx: Context,
    workspace: Workspace,
    engine: PdfEngine,
    form: Mapping[str, str],
    input_paths: Sequence[str],
) -> list[str]:
    """Merge the PDFs, then convert, write metadata and flatten as requested."""
    reader = _FormReader(form)
    formats = _read_formats(reader)
    metadata = _read_metadata(reader, False)
    paths = reader.mandatory_paths(input_paths, _PDF_EXTENSIONS)
    flatten = reader.boolean("flatten", False)
    reader.validate()

    output_path = workspace.generate_path(".pdf")
    with _step("merge PDFs"):
        engine.merge(ctx, paths, output_path)

    with _step("convert PDF"):
        output_paths = convert_stub(ctx, workspace, engine, formats, [output_path])
    with _step("write metadata"):
        write_metadata_stub(ctx, engine, metadata, output_paths)
    if flatten:
        with _step("flatten PDFs"):
            flatten_stub(ctx, engine, output_paths)
    return output_paths


def split_pdfs(
    ctx: Context,
    workspace: Workspace,
    engine: PdfEngine,
    form: Mapping[str, str],
    input_paths: Sequence[str],
) -> list[str]:
    """Split the PDFs, then convert, write metadata and flatten as requested."""
    reader = _FormReader(form)
    mode = _read_split_mode(reader, True)
    formats = _read_formats(reader)
    metadata = _read_metadata(reader, False)
    paths = reader.mandatory_paths(input_paths, _PDF_EXTENSIONS)
    flatten = reader.boolean("flatten", False)
    reader.validate()

    with _step("split PDFs"):
        output_paths = split_pdf_stub(ctx, workspace, engine, mode, paths)
    with _step("convert PDFs"):
        converted = convert_stub(ctx, workspace, engine, formats, output_paths)
    with _step("write metadata"):
        write_metadata_stub(ctx, engine, metadata, converted)
    if flatten:
        with _step("flatten PDFs"):
            flatten_stub(ctx, engine, converted)

    if not mode.is_empty() and not formats.is_empty():
        # Keep the split naming.
        for converted_path, output_path in zip(converted, output_paths):
            with _step("rename output path"):
                workspace.rename(converted_path, output_path)

    return output_paths


def flatten_pdfs(ctx: Context, engine: PdfEngine, input_paths: Sequence[str]) -> list[str]:
    """Flatten the PDFs in place and return their paths."""
    reader = _FormReader({})
    paths = reader.mandatory_paths(input_paths, _PDF_EXTENSIONS)
    reader.validate()

    with _step("flatten PDFs"):
        flatten_stub(ctx, engine, paths)
    return paths


def convert_pdfs(
    ctx: Context,
    workspace: Workspace,
    engine: PdfEngine,
    form: Mapping[str, str],
    input_paths: Sequence[str],
) -> list[str]:
    """Convert the PDFs to PDF/A or PDF/UA."""
    reader = _FormReader(form)
    formats = _read_formats(reader)
    paths = reader.mandatory_paths(input_paths, _PDF_EXTENSIONS)
    reader.validate()

    if formats.is_empty():
        raise FormError("Invalid form data: either 'pdfa' or 'pdfua' form fields must be provided")

    with _step("convert PDFs"):
        output_paths = convert_stub(ctx, workspace, engine, formats, paths)

    if len(output_paths) > 1:
        # Several outputs end up in an archive: keep the original filenames.
        for index, input_path in enumerate(paths):
            with _step("rename output path"):
                workspace.rename(output_paths[index], input_path)
            output_paths[index] = input_path

    return output_paths


def read_metadata(ctx: Context, engine: PdfEngine, input_paths: Sequence[str]) -> dict[str, dict[str, Any]]:
    """Metadata of each PDF, keyed by file name."""
    reader = _FormReader({})
    paths = reader.mandatory_paths(input_paths, _PDF_EXTENSIONS)
    reader.validate()

    result: dict[str, dict[str, Any]] = {}
    for path in paths:
        with _step("read metadata"):
            result[os.path.basename(path)] = engine.read_metadata(ctx, path)
    return result


def write_metadata(
    ctx: Context,
    engine: PdfEngine,
    form: Mapping[str, str],
    input_paths: Sequence[str],
) -> list[str]:
    """Write the mandatory metadata field into the PDFs and return their paths."""
    reader = _FormReader(form)
    metadata = _read_metadata(reader, True)
    paths = reader.mandatory_paths(input_paths, _PDF_EXTENSIONS)
    reader.validate()

    with _step("write metadata"):
        write_metadata_stub(ctx, engine, metadata, paths)
    return paths