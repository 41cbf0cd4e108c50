import os
import shutil
from pathlib import Path

import pytest

from pdfrelay.engine import (
    Context,
    ContextCancelledError,
    PdfEngine,
    PdfEngineError,
    PdfFormats,
    SplitMode,
)
from pdfrelay.forms import (
    FormError,
    Workspace,
    convert_pdfs,
    convert_stub,
    flatten_pdfs,
    flatten_stub,
    form_data_pdf_formats,
    form_data_pdf_metadata,
    form_data_pdf_split_mode,
    merge_pdfs,
    merge_stub,
    read_metadata,
    split_pdf_stub,
    split_pdfs,
    write_metadata,
    write_metadata_stub,
)


class FakeEngine(PdfEngine):
    engine_id = "fake"

    def __init__(self, pages=2, fail_flatten=False):
        self.pages = pages
        self.fail_flatten = fail_flatten
        self.calls = []

    def merge(self, ctx, input_paths, output_path):
        self.calls.append(("merge", list(input_paths), output_path))
        Path(output_path).write_bytes(b"%PDF-merged")

    def split(self, ctx, mode, input_path, output_dir_path):
        self.calls.append(("split", mode, input_path, output_dir_path))
        paths = []
        for number in range(1, self.pages + 1):
            path = os.path.join(output_dir_path, f"part_{number}.pdf")
            Path(path).write_bytes(f"page {number}".encode())
            paths.append(path)
        return paths

    def flatten(self, ctx, input_path):
        self.calls.append(("flatten", input_path))
        if self.fail_flatten:
            raise PdfEngineError("boom")

    def convert(self, ctx, formats, input_path, output_path):
        self.calls.append(("convert", formats, input_path, output_path))
        shutil.copyfile(input_path, output_path)

    def read_metadata(self, ctx, input_path):
        return {"Size": os.path.getsize(input_path)}

    def write_metadata(self, ctx, metadata, input_path):
        self.calls.append(("write_metadata", metadata, input_path))


@pytest.fixture
def workspace(tmp_path):
    return Workspace(str(tmp_path))


@pytest.fixture
def pdfs(tmp_path):
    src = tmp_path / "inputs"
    src.mkdir()
    paths = []
    for name in ("doc.pdf", "other.pdf"):
        path = src / name
        path.write_bytes(name.encode())
        paths.append(str(path))
    return paths


def test_split_mode_intervals():
    mode = form_data_pdf_split_mode({"splitMode": "intervals", "splitSpan": "1"}, True)
    assert mode == SplitMode(mode="intervals", span="1", unify=False)


def test_split_mode_pages_removes_whitespace_and_unifies():
    form = {"splitMode": "pages", "splitSpan": " 1 - 2 ", "splitUnify": "true"}
    mode = form_data_pdf_split_mode(form, True)
    assert mode == SplitMode(mode="pages", span="1-2", unify=True)


@pytest.mark.parametrize(
    "form",
    [
        {"splitMode": "foo", "splitSpan": "1"},
        {"splitMode": "intervals", "splitSpan": "0"},
        {"splitMode": "intervals", "splitSpan": "abc"},
        {"splitMode": "intervals", "splitSpan": "1", "splitUnify": "true"},
        {"splitMode": "pages", "splitSpan": "1", "splitUnify": "maybe"},
    ],
)
def test_split_mode_invalid(form):
    with pytest.raises(FormError):
        form_data_pdf_split_mode(form, True)


def test_split_mode_mandatory_missing():
    with pytest.raises(FormError) as info:
        form_data_pdf_split_mode({}, True)
    assert len(info.value.errors) == 2


def test_split_mode_optional_missing_is_empty():
    assert form_data_pdf_split_mode({}, False).is_empty()


def test_pdf_formats():
    formats = form_data_pdf_formats({"pdfa": "PDF/A-1b", "pdfua": "true"})
    assert formats == PdfFormats(pdf_a="PDF/A-1b", pdf_ua=True)
    assert form_data_pdf_formats({}).is_empty()


def test_pdf_formats_bad_bool():
    with pytest.raises(FormError):
        form_data_pdf_formats({"pdfua": "yes"})


def test_metadata_parsed():
    metadata = form_data_pdf_metadata({"metadata": '{"Author": "Jane", "Pages": 3}'}, False)
    assert metadata == {"Author": "Jane", "Pages": 3}


@pytest.mark.parametrize("value", ["{not json", "[1, 2]"])
def test_metadata_invalid(value):
    with pytest.raises(FormError):
        form_data_pdf_metadata({"metadata": value}, False)


def test_metadata_mandatory_and_optional_missing():
    with pytest.raises(FormError):
        form_data_pdf_metadata({}, True)
    assert form_data_pdf_metadata({}, False) == {}


def test_workspace_generate_path_is_unique(workspace):
    first = workspace.generate_path(".pdf")
    second = workspace.generate_path(".pdf")
    assert first != second
    assert first.endswith(".pdf")
    assert os.path.dirname(first) == workspace.directory


def test_merge_stub(workspace, pdfs):
    engine = FakeEngine()
    with pytest.raises(ValueError):
        merge_stub(Context(), workspace, engine, [])
    assert merge_stub(Context(), workspace, engine, pdfs[:1]) == pdfs[0]
    assert engine.calls == []
    output = merge_stub(Context(), workspace, engine, pdfs)
    assert os.path.exists(output)
    assert engine.calls[0][1] == pdfs


def test_split_pdf_stub_empty_mode(workspace, pdfs):
    engine = FakeEngine()
    assert split_pdf_stub(Context(), workspace, engine, SplitMode(), pdfs) == pdfs
    assert engine.calls == []


def test_split_pdf_stub_keeps_filename(workspace, pdfs):
    engine = FakeEngine(pages=2)
    mode = SplitMode(mode="intervals", span="1")
    outputs = split_pdf_stub(Context(), workspace, engine, mode, pdfs[:1])
    assert [os.path.basename(path) for path in outputs] == ["doc_0.pdf", "doc_1.pdf"]
    assert [Path(path).read_bytes() for path in outputs] == [b"page 1", b"page 2"]


def test_split_pdf_stub_unify(workspace, pdfs):
    engine = FakeEngine(pages=3)
    mode = SplitMode(mode="pages", span="1-2", unify=True)
    outputs = split_pdf_stub(Context(), workspace, engine, mode, pdfs[:1])
    assert [os.path.basename(path) for path in outputs] == ["doc.pdf"]


def test_convert_stub(workspace, pdfs):
    engine = FakeEngine()
    assert convert_stub(Context(), workspace, engine, PdfFormats(), pdfs) == pdfs
    outputs = convert_stub(Context(), workspace, engine, PdfFormats(pdf_ua=True), pdfs)
    assert len(outputs) == len(pdfs)
    assert [Path(path).read_bytes() for path in outputs] == [Path(path).read_bytes() for path in pdfs]


def test_write_metadata_stub_skips_empty(pdfs):
    engine = FakeEngine()
    write_metadata_stub(Context(), engine, {}, pdfs)
    assert engine.calls == []
    write_metadata_stub(Context(), engine, {"Title": "x"}, pdfs)
    assert [call[2] for call in engine.calls] == pdfs


def test_flatten_stub_wraps_error(pdfs):
    engine = FakeEngine(fail_flatten=True)
    with pytest.raises(PdfEngineError) as info:
        flatten_stub(Context(), engine, pdfs)
    assert pdfs[0] in str(info.value)
    assert "boom" in str(info.value)


def test_merge_pdfs_with_flatten_and_metadata(workspace, pdfs):
    engine = FakeEngine()
    form = {"flatten": "true", "metadata": '{"Title": "t"}'}
    outputs = merge_pdfs(Context(), workspace, engine, form, pdfs)
    assert len(outputs) == 1
    kinds = [call[0] for call in engine.calls]
    assert kinds == ["merge", "write_metadata", "flatten"]


def test_merge_pdfs_requires_pdfs(workspace, tmp_path):
    text = tmp_path / "note.txt"
    text.write_text("x")
    with pytest.raises(FormError):
        merge_pdfs(Context(), workspace, FakeEngine(), {}, [str(text)])


def test_split_pdfs_with_conversion_keeps_names(workspace, pdfs):
    engine = FakeEngine(pages=2)
    form = {"splitMode": "intervals", "splitSpan": "1", "pdfua": "true"}
    outputs = split_pdfs(Context(), workspace, engine, form, pdfs[:1])
    assert [os.path.basename(path) for path in outputs] == ["doc_0.pdf", "doc_1.pdf"]
    assert all(os.path.exists(path) for path in outputs)


def test_split_pdfs_requires_mode(workspace, pdfs):
    with pytest.raises(FormError):
        split_pdfs(Context(), workspace, FakeEngine(), {}, pdfs)


def test_flatten_pdfs(pdfs):
    engine = FakeEngine()
    assert flatten_pdfs(Context(), engine, pdfs) == pdfs
    assert [call[1] for call in engine.calls] == pdfs


def test_convert_pdfs_requires_format(workspace, pdfs):
    with pytest.raises(FormError):
        convert_pdfs(Context(), workspace, FakeEngine(), {}, pdfs)


def test_convert_pdfs_many_keeps_original_names(workspace, pdfs):
    engine = FakeEngine()
    outputs = convert_pdfs(Context(), workspace, engine, {"pdfa": "PDF/A-2b"}, pdfs)
    assert outputs == pdfs
    assert all(os.path.exists(path) for path in outputs)


def test_convert_pdfs_single_generates_path(workspace, pdfs):
    outputs = convert_pdfs(Context(), workspace, FakeEngine(), {"pdfa": "PDF/A-2b"}, pdfs[:1])
    assert outputs[0] != pdfs[0]
    assert Path(outputs[0]).read_bytes() == Path(pdfs[0]).read_bytes()


def test_read_metadata_keyed_by_basename(pdfs):
    result = read_metadata(Context(), FakeEngine(), pdfs)
    assert set(result) == {os.path.basename(path) for path in pdfs}
    assert result["doc.pdf"] == {"Size": os.path.getsize(pdfs[0])}


def test_write_metadata_route(pdfs):
    engine = FakeEngine()
    outputs = write_metadata(Context(), engine, {"metadata": '{"Author": "A"}'}, pdfs)
    assert outputs == pdfs
    assert engine.calls[0][1] == {"Author": "A"}
    with pytest.raises(FormError):
        write_metadata(Context(), engine, {}, pdfs)


def test_cancelled_context_propagates(workspace, pdfs):
    class CancellingEngine(FakeEngine):
        def merge(self, ctx, input_paths, output_path):
            ctx.check()

    ctx = Context()
    ctx.cancel()
    with pytest.raises(ContextCancelledError):
        merge_stub(ctx, workspace, CancellingEngine(), pdfs)