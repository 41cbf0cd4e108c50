import pytest

from pdfrelay.engine import Context, PdfEngine, PdfEngineError
from pdfrelay.multi import MultiPdfEngines
from pdfrelay.registry import PdfEngines, default_options


class FakeEngine(PdfEngine):
    def __init__(self, engine_id, fail=False):
        self.engine_id = engine_id
        self.fail = fail
        self.calls = []

    def merge(self, ctx, input_paths, output_path):
        self.calls.append(("merge", list(input_paths), output_path))
        if self.fail:
            raise PdfEngineError(f"{self.engine_id} failed")


def _engines():
    return [FakeEngine("qpdf"), FakeEngine("pdfcpu"), FakeEngine("pdftk")]


def test_default_options_match_source_defaults():
    options = default_options()
    assert options["merge_engines"] == ["qpdf", "pdfcpu", "pdftk"]
    assert options["split_engines"] == ["pdfcpu", "qpdf", "pdftk"]
    assert options["flatten_engines"] == ["qpdf"]
    assert options["convert_engines"] == ["libreoffice-pdfengine"]
    assert options["read_metadata_engines"] == ["exiftool"]
    assert options["write_metadata_engines"] == ["exiftool"]
    assert options["disable_routes"] is False


def test_empty_selection_means_all_engines():
    registry = PdfEngines()
    registry.provision(
        _engines(),
        {key: [] for key in default_options() if key.endswith("_engines")},
    )
    for names in registry.names.values():
        assert names == ["qpdf", "pdfcpu", "pdftk"]
    registry.validate()


def test_validate_reports_missing_default_engines():
    registry = PdfEngines()
    registry.provision(_engines())
    with pytest.raises(ValueError) as info:
        registry.validate()
    assert str(info.value) == (
        "non-existing PDF engine(s): [libreoffice-pdfengine exiftool] - "
        "available PDF engine(s): [qpdf pdfcpu pdftk]"
    )


def test_validate_deduplicates_missing_names():
    registry = PdfEngines()
    registry.provision(
        [FakeEngine("qpdf")],
        {
            "merge_engines": ["foo"],
            "split_engines": ["foo", "qpdf"],
            "flatten_engines": [],
            "convert_engines": [],
            "read_metadata_engines": [],
            "write_metadata_engines": ["bar"],
        },
    )
    with pytest.raises(ValueError, match=r"\[foo bar\]"):
        registry.validate()


def test_validate_without_engines():
    registry = PdfEngines()
    registry.provision([])
    with pytest.raises(ValueError, match="no PDF engine"):
        registry.validate()


def test_system_messages():
    registry = PdfEngines()
    registry.provision(
        _engines(),
        {
            "merge_engines": ["pdftk", "qpdf"],
            "convert_engines": [],
            "read_metadata_engines": ["pdfcpu"],
            "write_metadata_engines": ["pdfcpu"],
        },
    )
    assert registry.system_messages() == [
        "merge engines - pdftk qpdf",
        "split engines - pdfcpu qpdf pdftk",
        "flatten engines - qpdf",
        "convert engines - qpdf pdfcpu pdftk",
        "read metadata engines - pdfcpu",
        "write metadata engines - pdfcpu",
    ]


def test_disable_routes_option():
    registry = PdfEngines()
    registry.provision(_engines(), {"disable_routes": True})
    assert registry.disable_routes is True


def test_pdf_engine_follows_selected_order():
    first = FakeEngine("pdftk", fail=True)
    second = FakeEngine("qpdf")
    unused = FakeEngine("pdfcpu")
    registry = PdfEngines()
    registry.provision([second, unused, first], {"merge_engines": ["pdftk", "qpdf"]})

    multi = registry.pdf_engine()
    assert isinstance(multi, MultiPdfEngines)
    assert multi.merge_engines == [first, second]

    multi.merge(Context(), ["a.pdf", "b.pdf"], "out.pdf")
    assert first.calls == [("merge", ["a.pdf", "b.pdf"], "out.pdf")]
    assert second.calls == [("merge", ["a.pdf", "b.pdf"], "out.pdf")]
    assert unused.calls == []


def test_pdf_engine_all_fail_raises():
    registry = PdfEngines()
    registry.provision(
        [FakeEngine("qpdf", fail=True), FakeEngine("pdfcpu", fail=True)],
        {"merge_engines": ["qpdf", "pdfcpu"]},
    )
    with pytest.raises(PdfEngineError):
        registry.pdf_engine().merge(Context(), ["a.pdf"], "out.pdf")