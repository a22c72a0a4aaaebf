"""Executor - Issues single HTTP requests and captures the outcome.

Every call returns a CallResult with timing, the request as sent, and the
response and/or failure. Transport errors, error statuses and body
serialization problems are recorded on the result; execute() never raises
them to the caller.

Each call opens its own httpx.Client and closes it before returning, so an
executor holds no connections and can be shared between threads. The
ClientConfig is frozen and is never modified by a call. Proxy and netrc
settings from the environment are not applied.
"""

from __future__ import annotations

import base64
import logging
import ssl
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from rest_helper.body_codec import BodySerializationError, is_blank, serialize_body
from rest_helper.models import (
    BasicAuthCredentials,
    CallFailure,
    CallResult,
    ClientCertificate,
    ClientConfig,
    FailureKind,
    RequestSpec,
    ResponseCapture,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "rest-helper"
JSON_CONTENT_TYPE = "application/json; charset=utf-8"
MINIMUM_TLS_VERSION = ssl.TLSVersion.TLSv1_2


def merge_headers(
    base: dict[str, str],
    extra: dict[str, str] | None,
) -> dict[str, str]:
    """Return base plus the keys of extra that base does not already have.

    Keys are compared exactly; an existing value is never overwritten.
    """
    merged = dict(base)
    if extra:
        for key, value in extra.items():
            if key not in merged:
                merged[key] = value
    return merged


def basic_auth_header(credentials: BasicAuthCredentials | None) -> str | None:
    """Build the Authorization value, or None if either credential is blank."""
    if credentials is None:
        return None
    if is_blank(credentials.username) or is_blank(credentials.password):
        return None
    token = f"{credentials.username}:{credentials.password}".encode("utf-8")
    return f"Basic {base64.b64encode(token).decode('ascii')}"


def build_ssl_context(
    certificate: ClientCertificate | None,
    minimum_version: ssl.TLSVersion = MINIMUM_TLS_VERSION,
) -> ssl.SSLContext:
    """Create a verifying SSL context with a protocol floor and optional client cert."""
    ssl_context = ssl.create_default_context()
    ssl_context.minimum_version = minimum_version
    if certificate is not None:
        ssl_context.load_cert_chain(
            certfile=certificate.cert_file,
            keyfile=certificate.key_file,
            password=certificate.password,
        )
    return ssl_context


def _set_header(headers: dict[str, str], name: str, value: str) -> None:
    """Set a header, replacing any existing key that differs only in case."""
    for key in [k for k in headers if k.lower() == name.lower()]:
        del headers[key]
    headers[name] = value


def _merge_sent_headers(recorded: dict[str, str], sent: httpx.Headers) -> dict[str, str]:
    """Add headers the transport put on the request without touching recorded ones.

    HTTP header names are case-insensitive, so "host" does not get added
    next to a recorded "Host".
    """
    merged = dict(recorded)
    present = {key.lower() for key in merged}
    for raw_key, raw_value in sent.raw:
        key = raw_key.decode(sent.encoding)
        if key.lower() in present:
            continue
        merged[key] = raw_value.decode(sent.encoding)
        present.add(key.lower())
    return merged


def _capture_response(response: httpx.Response) -> ResponseCapture:
    """Convert an httpx Response to ResponseCapture.

    Header names keep the casing the server sent. Repeated headers collapse
    to their last value.
    """
    headers: dict[str, str] = {}
    names: dict[str, str] = {}
    encoding = response.headers.encoding
    for raw_key, raw_value in response.headers.raw:
        key = raw_key.decode(encoding)
        previous = names.get(key.lower())
        if previous is not None:
            del headers[previous]
        names[key.lower()] = key
        headers[key] = raw_value.decode(encoding)

    return ResponseCapture(
        status_code=response.status_code,
        status_text=response.reason_phrase,
        headers=headers,
        body=response.content.decode("utf-8", errors="replace"),
    )


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


class _SharedTransport(httpx.BaseTransport):
    """Forwards to a caller-owned transport and leaves closing it to the caller.

    Each call's client closes its transport on exit; wrapping keeps an
    injected transport usable across calls.
    """

    def __init__(self, transport: httpx.BaseTransport) -> None:
        self._transport = transport

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        return self._transport.handle_request(request)

    def close(self) -> None:
        pass


class RequestExecutor:
    """Executes requests built from a fixed ClientConfig.

    Usage:
        executor = RequestExecutor(ClientConfig(base_url="https://api.example.com"))
        result = executor.execute("/widgets/1", "GET")
        if result.failure is None:
            widget = result.response.body_to(Widget)
    """

    def __init__(
        self,
        config: ClientConfig,
        timeout: float = DEFAULT_TIMEOUT,
        minimum_tls_version: ssl.TLSVersion = MINIMUM_TLS_VERSION,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            config: Base URL, default headers, credentials. Never modified.
            timeout: Network timeout in seconds applied to every call.
            minimum_tls_version: Lowest TLS version accepted for every call.
            transport: httpx transport to send through. None uses the default
                       network transport; tests pass httpx.MockTransport.
                       The caller owns it: calls never close it.
        """
        self._config = config
        self._timeout = timeout
        self._minimum_tls_version = minimum_tls_version
        self._transport = _SharedTransport(transport) if transport is not None else None

    @property
    def config(self) -> ClientConfig:
        return self._config

    def execute(
        self,
        path: str,
        method: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> CallResult:
        """Make a single request.

        Args:
            path: Appended verbatim to config.base_url. None appends nothing.
            method: HTTP method, any case.
            body: None, text sent as-is, or a value serialized to JSON.
            headers: Extra headers for this call. Keys already present in
                     config.headers are ignored.

        Returns:
            CallResult for the attempt. Inspect result.response and
            result.failure to tell outcomes apart.
        """
        start = datetime.now(timezone.utc)
        started_at = time.perf_counter()

        # Recorded as-is if the full request cannot be built
        spec = RequestSpec(
            url=self._config.base_url + _as_text(path),
            method=_as_text(method).upper(),
        )
        response: ResponseCapture | None = None
        failure: CallFailure | None = None

        try:
            spec = RequestSpec(
                url=spec.url,
                method=spec.method,
                headers=merge_headers(self._config.headers, headers),
                basic_auth=self._config.basic_auth,
                client_certificate=self._config.client_certificate,
            )
            spec = spec.model_copy(update={"body": serialize_body(body)})

            send_headers = dict(spec.headers)
            authorization = basic_auth_header(spec.basic_auth)
            if authorization is not None:
                _set_header(send_headers, "Authorization", authorization)

            content: bytes | None = None
            if not is_blank(spec.body):
                content = spec.body.encode("utf-8")
                _set_header(send_headers, "Content-Type", JSON_CONTENT_TYPE)

            spec = spec.model_copy(update={"headers": send_headers})

            ssl_context = build_ssl_context(
                spec.client_certificate, self._minimum_tls_version
            )
            with httpx.Client(
                verify=ssl_context,
                timeout=self._timeout,
                transport=self._transport,
                trust_env=False,
                follow_redirects=True,
                headers={"User-Agent": DEFAULT_USER_AGENT},
            ) as client:
                request = client.build_request(
                    spec.method, spec.url, headers=send_headers, content=content
                )
                spec = spec.model_copy(
                    update={"headers": _merge_sent_headers(spec.headers, request.headers)}
                )

                logger.debug("Sending %s %s", spec.method, spec.url)
                http_response = client.send(request)
                # Redirects are followed; only 4xx/5xx are errors
                if http_response.is_error:
                    http_response.raise_for_status()
                response = _capture_response(http_response)

        except BodySerializationError as e:
            failure = CallFailure.from_exception(FailureKind.SERIALIZATION_ERROR, e)
        except httpx.HTTPStatusError as e:
            failure = CallFailure.from_exception(FailureKind.HTTP_STATUS_ERROR, e)
            response = _capture_response(e.response)
        except (httpx.RequestError, ssl.SSLError) as e:
            failure = CallFailure.from_exception(FailureKind.TRANSPORT_ERROR, e)
        except Exception as e:
            failure = CallFailure.from_exception(FailureKind.UNKNOWN_ERROR, e)

        end = start + timedelta(seconds=time.perf_counter() - started_at)

        if failure is not None:
            logger.debug(
                "%s %s failed (%s): %s",
                spec.method, spec.url, failure.kind.value, failure.message,
            )
        else:
            logger.debug(
                "%s %s -> %d in %.1fms",
                spec.method, spec.url, response.status_code,
                (end - start).total_seconds() * 1000,
            )

        return CallResult(
            start=start,
            end=end,
            duration=end - start,
            request=spec,
            response=response,
            failure=failure,
        )

    # -------------------------------------------------------------------------
    # Short-hand functions
    # -------------------------------------------------------------------------

    def get(self, path: str = "", headers: dict[str, str] | None = None) -> CallResult:
        return self.execute(path, "GET", None, headers)

    def post(
        self, path: str = "", body: Any = None, headers: dict[str, str] | None = None
    ) -> CallResult:
        return self.execute(path, "POST", body, headers)

    def put(
        self, path: str = "", body: Any = None, headers: dict[str, str] | None = None
    ) -> CallResult:
        return self.execute(path, "PUT", body, headers)

    def delete(
        self, path: str = "", body: Any = None, headers: dict[str, str] | None = None
    ) -> CallResult:
        return self.execute(path, "DELETE", body, headers)

    def head(self, path: str = "", headers: dict[str, str] | None = None) -> CallResult:
        return self.execute(path, "HEAD", None, headers)
