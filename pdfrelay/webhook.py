"""Asynchronous delivery of output files, or error details, to webhook URLs."""

from __future__ import annotations

import json
import logging
import os
import re
import threading
import time
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import IO, Any, Callable, Mapping, Pattern, Union

import requests
from requests.structures import CaseInsensitiveDict

WEBHOOK_URL_HEADER = "Gotenberg-Webhook-Url"
WEBHOOK_ERROR_URL_HEADER = "Gotenberg-Webhook-Error-Url"
WEBHOOK_METHOD_HEADER = "Gotenberg-Webhook-Method"
WEBHOOK_ERROR_METHOD_HEADER = "Gotenberg-Webhook-Error-Method"
WEBHOOK_EXTRA_HTTP_HEADERS_HEADER = "Gotenberg-Webhook-Extra-Http-Headers"

_ALLOWED_METHODS = ("POST", "PATCH", "PUT")
_SNIFF_LENGTH = 512
_BINARY_BYTES = frozenset(
    list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20))
)
_NO_RETRY_ERRORS = (
    requests.exceptions.InvalidURL,
    requests.exceptions.MissingSchema,
    requests.exceptions.InvalidSchema,
    requests.exceptions.InvalidHeader,
    requests.exceptions.TooManyRedirects,
    requests.exceptions.SSLError,
)

PatternLike = Union[str, Pattern[str], None]
Body = Union[bytes, IO[bytes]]


class WebhookError(Exception):
    """A webhook failure, with the HTTP status and public message it maps to."""

    def __init__(self, message: str, status: int = 500, public_message: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.public_message = public_message or HTTPStatus(status).phrase

    def wrap(self, prefix: str) -> WebhookError:
        """The same error with a prefixed internal message."""
        return WebhookError(f"{prefix}: {self}", self.status, self.public_message)


def _compile(pattern: PatternLike) -> Pattern[str] | None:
    if pattern is None or isinstance(pattern, re.Pattern):
        return pattern
    if not pattern:
        return None
    return re.compile(pattern)


def filter_url(allow_list: PatternLike, deny_list: PatternLike, url: str) -> str:
    """Return the URL if the allow list matches it and the deny list does not."""
    allow = _compile(allow_list)
    deny = _compile(deny_list)
    if allow is not None and not allow.search(url):
        raise WebhookError(f"'{url}' does not match the expression from the allowed list", 403)
    if deny is not None and deny.search(url):
        raise WebhookError(f"'{url}' matches the expression from the denied list", 403)
    return url


def method_from_header(headers: Mapping[str, str], name: str) -> str:
    """The HTTP method named by a header; POST when absent or empty."""
    method = CaseInsensitiveDict(headers or {}).get(name) or ""
    if not method:
        return "POST"
    method = method.upper()
    if method in _ALLOWED_METHODS:
        return method
    raise WebhookError(
        f"webhook method '{method}' is not 'POST', 'PATCH' or 'PUT'",
        400,
        f"Invalid '{name}' header value: expected 'POST', 'PATCH' or 'PUT', but got '{method}'",
    )


def parse_extra_http_headers(value: str) -> dict[str, str]:
    """Parse the JSON object of extra HTTP headers; an empty value gives none."""
    if not value:
        return {}

    def invalid(reason: str) -> WebhookError:
        return WebhookError(
            f"unmarshal webhook extra HTTP headers: {reason}",
            400,
            f"Invalid '{WEBHOOK_EXTRA_HTTP_HEADERS_HEADER}' header value: {reason}",
        )

    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise invalid(str(exc)) from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise invalid("expected a JSON object")
    for key, item in parsed.items():
        if not isinstance(item, str):
            raise invalid(f"value of '{key}' is not a string")
    return dict(parsed)


def _detect_content_type(head: bytes) -> str:
    if head.startswith(b"%PDF-"):
        return "application/pdf"
    if head.startswith(b"PK\x03\x04"):
        return "application/zip"
    if any(byte in _BINARY_BYTES for byte in head):
        return "application/octet-stream"
    return "text/plain; charset=utf-8"


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _is_retryable_status(status: int) -> bool:
    return status == 429 or (status >= 500 and status != 501)


@dataclass
class WebhookClient:
    """Sends a success or error request to the webhook, retrying on failures."""

    url: str
    method: str
    error_url: str
    error_method: str
    extra_http_headers: dict[str, str] = field(default_factory=dict)
    start_time: float = field(default_factory=time.monotonic)
    timeout: float = 30.0
    max_retry: int = 4
    retry_min_wait: float = 1.0
    retry_max_wait: float = 30.0
    session: requests.Session = field(default_factory=requests.Session)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("pdfrelay.webhook"))
    sleep: Callable[[float], Any] = time.sleep

    def _backoff(self, attempt: int, response: requests.Response | None) -> float:
        if response is not None and response.status_code in (429, 503):
            retry_after = response.headers.get("Retry-After", "")
            if retry_after.isdigit():
                return float(retry_after)
        wait = self.retry_min_wait * (2 ** attempt)
        return min(wait, self.retry_max_wait)

    def send(self, body: Body, headers: Mapping[str, str], errored: bool) -> None:
        """Send the body to the webhook URL, or to the error URL when errored."""
        url = self.error_url if errored else self.url
        method = self.error_method if errored else self.method

        request_headers: CaseInsensitiveDict = CaseInsensitiveDict({"User-Agent": "Gotenberg"})
        # Caller's headers take precedence over the user's extra headers.
        request_headers.update(self.extra_http_headers or {})

        caller_headers = CaseInsensitiveDict(headers or {})
        content_length: int | None = None
        if "Content-Length" in caller_headers:
            raw = caller_headers["Content-Length"]
            try:
                content_length = int(raw)
            except (TypeError, ValueError) as exc:
                raise WebhookError(f"parse content length entry: invalid value '{raw}'") from exc
        request_headers.update(caller_headers)
        if content_length is None and isinstance(body, (bytes, bytearray)):
            content_length = len(body)

        position = body.tell() if hasattr(body, "seek") else None
        attempts = self.max_retry + 1
        response: requests.Response | None = None

        for attempt in range(attempts):
            if position is not None:
                body.seek(position)
            response = None
            try:
                response = self.session.request(
                    method, url, data=body, headers=dict(request_headers), timeout=self.timeout
                )
            except _NO_RETRY_ERRORS as exc:
                raise WebhookError(f"send '{method}' request to '{url}': {exc}") from exc
            except requests.RequestException as exc:
                self.logger.debug("request to '%s' failed: %s", url, exc)
            else:
                if not _is_retryable_status(response.status_code):
                    break
                response.close()
            if attempt < attempts - 1:
                self.sleep(self._backoff(attempt, response))
        else:
            raise WebhookError(
                f"send '{method}' request to '{url}': giving up after {attempts} attempt(s)"
            )

        try:
            if response.status_code >= 400:
                raise WebhookError(
                    f"send '{method}' request to '{url}': got status: "
                    f"'{response.status_code} {response.reason}'"
                )
        finally:
            response.close()

        latency = time.monotonic() - self.start_time
        fields = {
            "webhook_url": url,
            "method": method,
            "latency": int(latency * 1e9),
            "latency_human": f"{latency:.6f}s",
            "bytes_out": content_length if content_length is not None else -1,
        }
        if errored:
            self.logger.warning("request to webhook with error details handled", extra=fields)
        else:
            self.logger.info("request to webhook handled", extra=fields)


_DEFAULTS: dict[str, Any] = {
    "allow_list": "",
    "deny_list": "",
    "error_allow_list": "",
    "error_deny_list": "",
    "max_retry": 4,
    "retry_min_wait": 1.0,
    "retry_max_wait": 30.0,
    "client_timeout": 30.0,
    "disable": False,
}


class Webhook:
    """Uploads output files to a webhook in the background when asked to."""

    def __init__(self) -> None:
        self.allow_list: Pattern[str] | None = None
        self.deny_list: Pattern[str] | None = None
        self.error_allow_list: Pattern[str] | None = None
        self.error_deny_list: Pattern[str] | None = None
        self.max_retry = _DEFAULTS["max_retry"]
        self.retry_min_wait = _DEFAULTS["retry_min_wait"]
        self.retry_max_wait = _DEFAULTS["retry_max_wait"]
        self.client_timeout = _DEFAULTS["client_timeout"]
        self.disable = _DEFAULTS["disable"]
        self.logger = logging.getLogger("pdfrelay.webhook")

    def provision(self, options: Mapping[str, Any] | None = None) -> None:
        """Apply the options, falling back to the defaults."""
        settings = dict(_DEFAULTS)
        if options:
            settings.update(options)
        self.allow_list = _compile(settings["allow_list"])
        self.deny_list = _compile(settings["deny_list"])
        self.error_allow_list = _compile(settings["error_allow_list"])
        self.error_deny_list = _compile(settings["error_deny_list"])
        self.max_retry = int(settings["max_retry"])
        self.retry_min_wait = float(settings["retry_min_wait"])
        self.retry_max_wait = float(settings["retry_max_wait"])
        self.client_timeout = float(settings["client_timeout"])
        self.disable = bool(settings["disable"])

    def enabled(self) -> bool:
        return not self.disable

    def prepare(self, headers: Mapping[str, str]) -> WebhookClient | None:
        """Build a client from the request headers; None when no webhook is asked for."""
        values = CaseInsensitiveDict(headers or {})
        url = values.get(WEBHOOK_URL_HEADER) or ""
        if not url:
            return None

        error_url = values.get(WEBHOOK_ERROR_URL_HEADER) or ""
        if not error_url:
            raise WebhookError(
                "empty webhook error URL",
                400,
                f"Invalid '{WEBHOOK_ERROR_URL_HEADER}' header: empty value or header not provided",
            )

        try:
            filter_url(self.allow_list, self.deny_list, url)
        except WebhookError as exc:
            raise exc.wrap("filter webhook URL") from exc
        try:
            filter_url(self.error_allow_list, self.error_deny_list, error_url)
        except WebhookError as exc:
            raise exc.wrap("filter webhook error URL") from exc

        try:
            method = method_from_header(values, WEBHOOK_METHOD_HEADER)
        except WebhookError as exc:
            raise exc.wrap("get method to use for webhook") from exc
        try:
            error_method = method_from_header(values, WEBHOOK_ERROR_METHOD_HEADER)
        except WebhookError as exc:
            raise exc.wrap("get method to use for webhook error") from exc

        extra = parse_extra_http_headers(values.get(WEBHOOK_EXTRA_HTTP_HEADERS_HEADER) or "")

        return WebhookClient(
            url=url,
            method=method,
            error_url=error_url,
            error_method=error_method,
            extra_http_headers=extra,
            timeout=self.client_timeout,
            max_retry=self.max_retry,
            retry_min_wait=self.retry_min_wait,
            retry_max_wait=self.retry_max_wait,
            logger=self.logger,
        )

    def handle(
        self,
        headers: Mapping[str, str],
        process: Callable[[], str],
        trace_header: str,
        trace: str,
    ) -> threading.Thread | None:
        """Run ``process`` in the background and deliver its output file.

        Returns the started thread, or None when the request asks for no
        webhook, in which case the caller handles it synchronously. Invalid
        webhook headers raise WebhookError before anything runs.
        """
        client = self.prepare(headers)
        if client is None:
            return None
        thread = threading.Thread(
            target=self._deliver, args=(client, process, trace_header, trace), name="webhook"
        )
        thread.start()
        return thread

    def _send_error(self, client: WebhookClient, error: BaseException, trace_header: str, trace: str) -> None:
        if isinstance(error, WebhookError):
            status, message = error.status, error.public_message
        else:
            status = getattr(error, "status", 500)
            if isinstance(status, int) and 400 <= status < 500:
                message = str(error)
            else:
                status, message = 500, HTTPStatus.INTERNAL_SERVER_ERROR.phrase
        body = json.dumps({"status": status, "message": message}, separators=(",", ":")).encode()
        error_headers = {"Content-Type": "application/json", trace_header: trace}
        try:
            client.send(body, error_headers, True)
        except WebhookError as exc:
            self.logger.error("send error response to webhook: %s", exc)

    def _deliver(self, client: WebhookClient, process: Callable[[], str], trace_header: str, trace: str) -> None:
        try:
            output_path = process()
        except Exception as exc:
            self.logger.error("%s", exc)
            self._send_error(client, exc, trace_header, trace)
            return

        try:
            with open(output_path, "rb") as output_file:
                head = output_file.read(_SNIFF_LENGTH)
                if not head:
                    raise EOFError("read header of output file: EOF")
                size = os.fstat(output_file.fileno()).st_size
                output_file.seek(0)

                send_headers = {
                    "Content-Type": _detect_content_type(head),
                    "Content-Length": str(size),
                    trace_header: trace,
                }
                extra = CaseInsensitiveDict(client.extra_http_headers or {})
                if "Content-Disposition" not in extra:
                    filename = os.path.basename(output_path)
                    send_headers["Content-Disposition"] = f"attachment; filename={_quote(filename)}"

                client.send(output_file, send_headers, False)
        except (OSError, EOFError, WebhookError) as exc:
            self.logger.error("send output file to webhook: %s", exc)
            self._send_error(client, exc, trace_header, trace)