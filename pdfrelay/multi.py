"""Fallback chains of PDF engines, one chain per operation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Sequence, TypeVar

from pdfrelay.engine import Context, PdfEngine, PdfEngineError, PdfFormats, SplitMode

T = TypeVar("T")


@dataclass
class MultiPdfEngines(PdfEngine):
    """Tries each engine in order until one succeeds."""

    merge_engines: list[PdfEngine] = field(default_factory=list)
    split_engines: list[PdfEngine] = field(default_factory=list)
    flatten_engines: list[PdfEngine] = field(default_factory=list)
    convert_engines: list[PdfEngine] = field(default_factory=list)
    read_metadata_engines: list[PdfEngine] = field(default_factory=list)
    write_metadata_engines: list[PdfEngine] = field(default_factory=list)

    @staticmethod
    def _first_success(
        ctx: Context,
        engines: Sequence[PdfEngine],
        description: str,
        call: Callable[[PdfEngine], T],
    ) -> T:
        errors: list[Exception] = []
        for engine in engines:
            ctx.check()
            try:
                return call(engine)
            except Exception as exc:  # any engine failure moves on to the next one
                errors.append(exc)
        details = "; ".join(str(error) for error in errors) or "no engine available"
        error = PdfEngineError(f"{description} with multi PDF engines: {details}", causes=errors)
        if errors:
            raise error from errors[-1]
        raise error

    def merge(self, ctx: Context, input_paths: Sequence[str], output_path: str) -> None:
        self._first_success(
            ctx,
            self.merge_engines,
            "merge PDFs",
            lambda engine: engine.merge(ctx, input_paths, output_path),
        )

    def split(self, ctx: Context, mode: SplitMode, input_path: str, output_dir_path: str) -> list[str]:
        return self._first_success(
            ctx,
            self.split_engines,
            "split PDF",
            lambda engine: engine.split(ctx, mode, input_path, output_dir_path),
        )

    def flatten(self, ctx: Context, input_path: str) -> None:
        self._first_success(
            ctx,
            self.flatten_engines,
            "flatten PDF",
            lambda engine: engine.flatten(ctx, input_path),
        )

    def convert(self, ctx: Context, formats: PdfFormats, input_path: str, output_path: str) -> None:
        self._first_success(
            ctx,
            self.convert_engines,
            f"convert PDF to '{formats}'",
            lambda engine: engine.convert(ctx, formats, input_path, output_path),
        )

    def read_metadata(self, ctx: Context, input_path: str) -> dict[str, Any]:
        return self._first_success(
            ctx,
            self.read_metadata_engines,
            "read PDF metadata",
            lambda engine: engine.read_metadata(ctx, input_path),
        )

    def write_metadata(self, ctx: Context, metadata: dict[str, Any], input_path: str) -> None:
        self._first_success(
            ctx,
            self.write_metadata_engines,
            "write PDF metadata",
            lambda engine: engine.write_metadata(ctx, metadata, input_path),
        )