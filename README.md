# pdfrelay

pdfrelay runs PDF jobs through command-line PDF tools: merge, split, flatten, convert, and metadata read
and write. Several tools can stand in for one another, and each operation falls back from one tool to
the next. It also handles form fields, samples metrics, and delivers results to webhooks.

## Contexts and commands

`pdfrelay.engine.Context(timeout=None, logger=None)` carries cancellation and an optional deadline in
seconds. It offers these methods:

- `cancel()` cancels the context.
- `is_done()` reports whether the context is cancelled or past its deadline.
- `check()` raises `ContextCancelledError` if the context is done.
- `remaining()` returns the seconds left, or `None` if there is no deadline.

`run_command(ctx, bin_path, args)` runs a tool in its own process group and returns its standard output.
If the context ends while the tool runs, the process group is killed and `ContextCancelledError` is
raised. If the tool cannot start or exits with a non-zero code, `CommandError` is raised; it carries
`returncode` and `stderr`.

All engine errors derive from `PdfEngineError`.

## Engines

These engines live in `pdfrelay.cli_engines`:

| class    | id       | binary variable   | merge | split                                  | flatten |
|----------|----------|-------------------|-------|----------------------------------------|---------|
| `PdfCpu` | `pdfcpu` | `PDFCPU_BIN_PATH` | yes   | `intervals`; `pages`, with or without unify | no      |
| `PdfTk`  | `pdftk`  | `PDFTK_BIN_PATH`  | yes   | `pages` with unify only                | no      |
| `QPdf`   | `qpdf`   | `QPDF_BIN_PATH`   | yes   | `pages` with unify only                | yes     |

Each engine has these methods:

- `provision(env=None)` reads the binary path from a mapping. With no mapping it reads `os.environ`. If the variable is missing, it raises `PdfEngineError`.
- `validate()` checks that the binary path exists.
- `debug()` returns `{"version": ...}`. The value is the tool's version line, or the error met while asking for it.

`QPdf` adds `--warning-exit-0` to every call once provisioned, so warnings do not fail a job.

Split modes are described by `SplitMode(mode, span, unify)`, where `mode` is `"intervals"` or `"pages"`.
`PdfCpu` returns the resulting PDFs in natural order, so `a2` comes before `a10`; see
`natural_sort_key`.

Two errors mark what an engine cannot do:

- An operation that the engine does not offer raises `MethodNotSupportedError`.
- A split mode that the engine cannot handle raises `SplitModeNotSupportedError`.

To add an engine of your own, subclass `pdfrelay.engine.PdfEngine`, set `engine_id`, and override the
operations it supports.

## Fallback across engines

`pdfrelay.multi.MultiPdfEngines` holds one ordered list of engines per operation. It tries each engine
in turn and returns the first success. It checks the context before each attempt and raises
`ContextCancelledError` once the context is done. If every engine fails, or the list is empty, it raises
a `PdfEngineError`; its `causes` list holds each failure.

`pdfrelay.registry.PdfEngines` builds that object from the available engines and an options mapping.
Options you do not give fall back to `default_options()`:

| option                   | default                 |
|--------------------------|-------------------------|
| `merge_engines`          | qpdf, pdfcpu, pdftk     |
| `split_engines`          | pdfcpu, qpdf, pdftk     |
| `flatten_engines`        | qpdf                    |
| `convert_engines`        | libreoffice-pdfengine   |
| `read_metadata_engines`  | exiftool                |
| `write_metadata_engines` | exiftool                |
| `disable_routes`         | False                   |

An empty list means every available engine, in the order given to `provision`.

`validate()` raises `ValueError` in two cases: when no engine was given, and when a selected name matches
no available engine. `system_messages()` lists the selection, one line per operation. `pdf_engine()`
returns the `MultiPdfEngines`.

```python
from pdfrelay.engine import Context
from pdfrelay.cli_engines import PdfCpu, PdfTk, QPdf
from pdfrelay.registry import PdfEngines, default_options

qpdf, pdfcpu, pdftk = QPdf(), PdfCpu(), PdfTk()
qpdf.provision({"QPDF_BIN_PATH": "/usr/bin/qpdf"})
pdfcpu.provision({"PDFCPU_BIN_PATH": "/usr/bin/pdfcpu"})
pdftk.provision({"PDFTK_BIN_PATH": "/usr/bin/pdftk"})

options = default_options()
# No engine here converts or handles metadata, so do not name one.
options.update(convert_engines=[], read_metadata_engines=[], write_metadata_engines=[])

engines = PdfEngines()
engines.provision([qpdf, pdfcpu, pdftk], options)
engines.validate()

multi = engines.pdf_engine()
multi.merge(Context(timeout=30), ["a.pdf", "b.pdf"], "out.pdf")
```

## Form handling

`pdfrelay.forms` reads form fields from a mapping of strings and runs whole jobs:

- `form_data_pdf_split_mode(form, mandatory)` reads `splitMode`, `splitSpan` and `splitUnify`. A span in `intervals` mode must be an integer of at least 1. `splitUnify` is only allowed with `pages`.
- `form_data_pdf_formats(form)` reads `pdfa` and `pdfua` into `PdfFormats`.
- `form_data_pdf_metadata(form, mandatory)` parses the `metadata` field as a JSON object.

Invalid or missing fields raise `FormError`, with `status` 400. It gathers every problem into its
`errors` list.

A `Workspace(directory)` supplies fresh output paths, sub-directories and renames. The job functions
take the context, the workspace, the engine, the form and the input file paths. Only `.pdf` inputs are
kept. Each function returns the resulting paths:

- `merge_pdfs` merges the inputs. It then converts, writes metadata and flattens when the form asks for it.
- `split_pdfs` does the same after a split. Split outputs are named `<name>_<n>.pdf`, or `<name>.pdf` when unified.
- `flatten_pdfs` flattens the inputs in place.
- `convert_pdfs` requires `pdfa` or `pdfua`.
- `read_metadata` returns the metadata of each PDF, keyed by file name.
- `write_metadata` requires the `metadata` field.

The smaller steps are available too: `merge_stub`, `split_pdf_stub`, `flatten_stub`, `convert_stub` and
`write_metadata_stub`.

## Metrics

`pdfrelay.metrics.MetricsCollector(namespace="gotenberg", interval=1.0, disable_route_logging=False,
disable_collect=False)` works as follows:

- It gathers `Metric(name, description, read)` objects from providers, which are objects with a `metrics()` method.
- `validate()` checks that the namespace is set and that each metric is named, readable and unique.
- `start()` samples every metric in a background thread at the interval, and `stop()` ends the sampling.
- `render()` returns the gauges as `<namespace>_<name>` in the Prometheus text format.

## Webhooks

`pdfrelay.webhook.Webhook` runs a job in the background and delivers its output file. `provision(options)`
accepts these options:

- `allow_list`, `deny_list`, `error_allow_list` and `error_deny_list` are regular expressions.
- `max_retry` defaults to 4.
- `retry_min_wait` and `retry_max_wait` default to 1 and 30 seconds.
- `client_timeout` defaults to 30 seconds.
- `disable` turns the feature off.

`handle(headers, process, trace_header, trace)` reads these request headers:

- `Gotenberg-Webhook-Url`. Without it, `handle` returns `None`.
- `Gotenberg-Webhook-Error-Url`, which is required once a webhook URL is given.
- `Gotenberg-Webhook-Method` and `Gotenberg-Webhook-Error-Method`. Each may be POST, PATCH or PUT; the default is POST.
- `Gotenberg-Webhook-Extra-Http-Headers`, a JSON object of string values.

Bad headers, or URLs rejected by the lists, raise `WebhookError`. It carries an HTTP `status` and a
`public_message`.

Otherwise `handle` starts and returns a thread. The thread calls `process()`, which must return the
output file path. It then sends the file with its content type, length, trace header and a
`Content-Disposition` attachment header, unless the extra headers supply their own. If `process` or the
delivery fails, a JSON body `{"status": ..., "message": ...}` goes to the error URL instead.

`WebhookClient.send` retries on connection errors, 429 and 5xx responses except 501. It waits with
exponential backoff between the two limits and honours `Retry-After`. `filter_url`,
`method_from_header` and `parse_extra_http_headers` are available on their own.

## What it does not do

pdfrelay is a library. It has no HTTP server, no routes and no command-line program; your own code calls
the job functions and the webhook. It ships no engine for PDF/A or PDF/UA conversion, and none for
reading or writing metadata. Those operations need an engine of your own, a `PdfEngine` subclass, and
the registry options must name it.

## Tests

```
pip install -e ".[test]"
pytest
```