"""Selection and ordering of PDF engines per operation."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from pdfrelay.engine import PdfEngine
from pdfrelay.multi import MultiPdfEngines

_OPERATIONS = (
    ("merge_engines", "merge"),
    ("split_engines", "split"),
    ("flatten_engines", "flatten"),
    ("convert_engines", "convert"),
    ("read_metadata_engines", "read metadata"),
    ("write_metadata_engines", "write metadata"),
)


def default_options() -> dict[str, Any]:
    """Default engine selection per operation; an empty list means all engines."""
    return {
        "merge_engines": ["qpdf", "pdfcpu", "pdftk"],
        "split_engines": ["pdfcpu", "qpdf", "pdftk"],
        "flatten_engines": ["qpdf"],
        "convert_engines": ["libreoffice-pdfengine"],
        "read_metadata_engines": ["exiftool"],
        "write_metadata_engines": ["exiftool"],
        "disable_routes": False,
    }


def _format_list(names: Sequence[str]) -> str:
    return "[" + " ".join(names) + "]"


class PdfEngines:
    """Aggregates PDF engines and orders them for each operation."""

    def __init__(self) -> None:
        self.engines: list[PdfEngine] = []
        self.names: dict[str, list[str]] = {key: [] for key, _ in _OPERATIONS}
        self.disable_routes = False

    def provision(self, engines: Sequence[PdfEngine], options: Mapping[str, Any] | None = None) -> None:
        """Register the available engines and the selected names per operation."""
        settings = default_options()
        if options:
            settings.update(options)

        self.engines = list(engines)
        self.disable_routes = bool(settings["disable_routes"])
        all_names = [engine.engine_id for engine in self.engines]

        for key, _ in _OPERATIONS:
            selected = list(settings[key] or [])
            self.names[key] = selected if selected else list(all_names)

    def validate(self) -> None:
        """Check there is at least one engine and that every selected name exists."""
        if not self.engines:
            raise ValueError("no PDF engine")

        available = [engine.engine_id for engine in self.engines]
        missing: list[str] = []
        for key, _ in _OPERATIONS:
            for name in self.names[key]:
                if name not in available and name not in missing:
                    missing.append(name)

        if missing:
            raise ValueError(
                f"non-existing PDF engine(s): {_format_list(missing)} - "
                f"available PDF engine(s): {_format_list(available)}"
            )

    def system_messages(self) -> list[str]:
        """One line per operation listing the selected engines."""
        return [f"{label} engines - {' '.join(self.names[key])}" for key, label in _OPERATIONS]

    def _select(self, names: Sequence[str]) -> list[PdfEngine]:
        by_id: dict[str, PdfEngine] = {}
        for engine in self.engines:
            by_id.setdefault(engine.engine_id, engine)
        return [by_id[name] for name in names if name in by_id]

    def pdf_engine(self) -> MultiPdfEngines:
        """A PDF engine that falls back through the selected engines."""
        return MultiPdfEngines(
            merge_engines=self._select(self.names["merge_engines"]),
            split_engines=self._select(self.names["split_engines"]),
            flatten_engines=self._select(self.names["flatten_engines"]),
            convert_engines=self._select(self.names["convert_engines"]),
            read_metadata_engines=self._select(self.names["read_metadata_engines"]),
            write_metadata_engines=self._select(self.names["write_metadata_engines"]),
        )