"""PDF engines backed by the pdfcpu, PDFtk and QPDF command-line tools."""

from __future__ import annotations

import os
from typing import Mapping, Sequence

from pdfrelay.engine import (
    SPLIT_MODE_INTERVALS,
    SPLIT_MODE_PAGES,
    CommandError,
    Context,
    PdfEngine,
    PdfEngineError,
    SplitMode,
    SplitModeNotSupportedError,
    natural_sort_key,
    run_command,
)


class _BinaryEngine(PdfEngine):
    """A PDF engine that drives an external binary located via an environment variable."""

    env_var: str = ""
    label: str = ""
    version_args: tuple[str, ...] = ("--version",)

    def __init__(self, bin_path: str = "") -> None:
        self.bin_path = bin_path

    def _provision_from(self, env: Mapping[str, str] | None) -> None:
        source = os.environ if env is None else env
        if self.env_var not in source:
            raise PdfEngineError(f"{self.env_var} environment variable is not set")
        self.bin_path = source[self.env_var]

    def _check_binary(self) -> None:
        if not os.path.exists(self.bin_path):
            raise PdfEngineError(f"{self.label} binary path does not exist: {self.bin_path!r}")

    def _debug_info(self) -> dict[str, str]:
        try:
            output = run_command(Context(), self.bin_path, list(self.version_args))
        except PdfEngineError as exc:
            return {"version": str(exc)}
        return {"version": self._parse_version(output)}

    def _parse_version(self, output: str) -> str:
        return output.split("\n", 1)[0]

    def _run(self, ctx: Context, args: Sequence[str], action: str) -> None:
        try:
            run_command(ctx, self.bin_path, args)
        except CommandError as exc:
            raise PdfEngineError(f"{action} with {self.label}: {exc}", causes=[exc]) from exc

    def _split_not_supported(self, mode: SplitMode, detail: str = "") -> SplitModeNotSupportedError:
        return SplitModeNotSupportedError(
            f"split PDFs using mode '{mode.mode}'{detail} with {self.label}: split mode not supported"
        )


class PdfCpu(_BinaryEngine):
    """Merges and splits PDFs with pdfcpu."""

    engine_id = "pdfcpu"
    env_var = "PDFCPU_BIN_PATH"
    label = "pdfcpu"
    version_args = ("version",)

    def provision(self, env: Mapping[str, str] | None = None) -> None:
        """Read the binary path from the environment."""
        self._provision_from(env)

    def validate(self) -> None:
        """Check that the binary path exists."""
        self._check_binary()

    def debug(self) -> dict[str, str]:
        """Return the binary's version, or the error met while asking for it."""
        return self._debug_info()

    def _parse_version(self, output: str) -> str:
        for line in output.split("\n"):
            if line.startswith("pdfcpu:"):
                return line[len("pdfcpu:"):].strip()
        return "Unable to determine pdfcpu version"

    def merge(self, ctx: Context, input_paths: Sequence[str], output_path: str) -> None:
        self._run(ctx, ["merge", output_path, *input_paths], "merge PDFs")

    def split(self, ctx: Context, mode: SplitMode, input_path: str, output_dir_path: str) -> list[str]:
        if mode.mode == SPLIT_MODE_INTERVALS:
            args = ["split", "-mode", "span", input_path, output_dir_path, mode.span]
        elif mode.mode == SPLIT_MODE_PAGES:
            if mode.unify:
                output_path = f"{output_dir_path}/{os.path.basename(input_path)}"
                args = ["trim", "-pages", mode.span, input_path, output_path]
            else:
                args = ["extract", "-mode", "page", "-pages", mode.span, input_path, output_dir_path]
        else:
            raise self._split_not_supported(mode)

        self._run(ctx, args, "split PDFs")
        return _find_pdfs(output_dir_path)


class PdfTk(_BinaryEngine):
    """Merges and splits PDFs with PDFtk."""

    engine_id = "pdftk"
    env_var = "PDFTK_BIN_PATH"
    label = "PDFtk"

    def provision(self, env: Mapping[str, str] | None = None) -> None:
        """Read the binary path from the environment."""
        self._provision_from(env)

    def validate(self) -> None:
        """Check that the binary path exists."""
        self._check_binary()

    def debug(self) -> dict[str, str]:
        """Return the binary's version, or the error met while asking for it."""
        return self._debug_info()

    def merge(self, ctx: Context, input_paths: Sequence[str], output_path: str) -> None:
        self._run(ctx, [*input_paths, "cat", "output", output_path], "merge PDFs")

    def split(self, ctx: Context, mode: SplitMode, input_path: str, output_dir_path: str) -> list[str]:
        output_path = f"{output_dir_path}/{os.path.basename(input_path)}"
        if mode.mode != SPLIT_MODE_PAGES:
            raise self._split_not_supported(mode)
        if not mode.unify:
            raise self._split_not_supported(mode, " without unify")
        self._run(ctx, [input_path, "cat", mode.span, "output", output_path], "split PDFs")
        return [output_path]


class QPdf(_BinaryEngine):
    """Merges, splits and flattens PDFs with QPDF."""

    engine_id = "qpdf"
    env_var = "QPDF_BIN_PATH"
    label = "QPDF"

    def __init__(self, bin_path: str = "") -> None:
        super().__init__(bin_path)
        self.global_args: list[str] = []

    def provision(self, env: Mapping[str, str] | None = None) -> None:
        """Read the binary path from the environment."""
        self._provision_from(env)
        # Warnings should not cause errors.
        self.global_args = ["--warning-exit-0"]

    def validate(self) -> None:
        """Check that the binary path exists."""
        self._check_binary()

    def debug(self) -> dict[str, str]:
        """Return the binary's version, or the error met while asking for it."""
        return self._debug_info()

    def merge(self, ctx: Context, input_paths: Sequence[str], output_path: str) -> None:
        args = ["--empty", *self.global_args, "--pages", *input_paths, "--", output_path]
        self._run(ctx, args, "merge PDFs")

    def split(self, ctx: Context, mode: SplitMode, input_path: str, output_dir_path: str) -> list[str]:
        output_path = f"{output_dir_path}/{os.path.basename(input_path)}"
        if mode.mode != SPLIT_MODE_PAGES:
            raise self._split_not_supported(mode)
        if not mode.unify:
            raise self._split_not_supported(mode, " without unify")
        args = [input_path, *self.global_args, "--pages", ".", mode.span, "--", output_path]
        self._run(ctx, args, "split PDFs")
        return [output_path]

    def flatten(self, ctx: Context, input_path: str) -> None:
        args = [
            input_path,
            "--generate-appearances",
            "--flatten-annotations=all",
            "--replace-input",
            *self.global_args,
        ]
        self._run(ctx, args, "flatten PDFs")


def _find_pdfs(directory: str) -> list[str]:
    """Every PDF file below a directory, in natural order."""

    def _raise(error: OSError) -> None:
        raise PdfEngineError(
            f"walk directory to find resulting PDFs from split with pdfcpu: {error}"
        ) from error

    paths = [
        os.path.join(root, name)
        for root, _dirs, files in os.walk(directory, onerror=_raise)
        for name in files
        if os.path.splitext(name)[1].lower() == ".pdf"
    ]
    return sorted(paths, key=natural_sort_key)