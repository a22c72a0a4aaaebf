"""Data models for rest-helper.

All models use Pydantic v2. Configuration and request records are frozen;
a call produces new RequestSpec copies instead of mutating one in place.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from rest_helper.body_codec import deserialize_body


# =============================================================================
# Client Configuration Models
# =============================================================================


class BasicAuthCredentials(BaseModel):
    """Username/password pair for HTTP Basic authentication.

    Both fields are required. Blank values are accepted here; a blank
    member suppresses the Authorization header at call time.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    username: str = Field(description="Basic auth username")
    password: str = Field(repr=False, description="Basic auth password")


class ClientCertificate(BaseModel):
    """Client certificate material for mutual TLS.

    Passed to ssl.SSLContext.load_cert_chain as-is.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    cert_file: str = Field(description="Path to PEM certificate (may include the key)")
    key_file: str | None = Field(default=None, description="Path to PEM private key")
    password: str | None = Field(
        default=None, repr=False, description="Password for an encrypted private key"
    )


class ClientConfig(BaseModel):
    """Base configuration applied to every call made by an executor."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    base_url: str = Field(default="", description="Prefix prepended verbatim to every path")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Headers sent with every request"
    )
    basic_auth: BasicAuthCredentials | None = Field(
        default=None, description="Basic auth credentials"
    )
    client_certificate: ClientCertificate | None = Field(
        default=None, description="Client certificate for mutual TLS"
    )


# =============================================================================
# Call Record Models
# =============================================================================


class RequestSpec(BaseModel):
    """The fully resolved request, as sent.

    Headers include the defaults, the call-specific additions, auth and
    content type, and whatever the transport added before sending.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    url: str = Field(description="Base URL concatenated with the call path")
    method: str = Field(description="Uppercased HTTP method")
    body: str | None = Field(default=None, description="Body text, if any")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    basic_auth: BasicAuthCredentials | None = Field(default=None)
    client_certificate: ClientCertificate | None = Field(default=None)


class ResponseCapture(BaseModel):
    """One HTTP response, from either a successful call or an error status."""

    model_config = ConfigDict(extra="forbid")

    status_code: int = Field(description="HTTP status code")
    status_text: str = Field(default="", description="Reason phrase")
    headers: dict[str, str] = Field(
        default_factory=dict, description="Response headers (one value per name)"
    )
    body: str | None = Field(default=None, description="Body decoded as UTF-8")

    def body_to(self, type_: Any, default: Any = None) -> Any:
        """Deserialize the JSON body into type_, or return default on failure."""
        return deserialize_body(self.body, type_, default)


class FailureKind(str, Enum):
    """How a call failed."""

    SERIALIZATION_ERROR = "serialization_error"  # Body could not be encoded; nothing sent
    HTTP_STATUS_ERROR = "http_status_error"  # Non-2xx status; response captured
    TRANSPORT_ERROR = "transport_error"  # Connect/DNS/TLS/timeout; no response
    UNKNOWN_ERROR = "unknown_error"


class CallFailure(BaseModel):
    """A failure captured at the call boundary instead of being raised."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    kind: FailureKind = Field(description="Failure classification")
    message: str = Field(description="Exception message")
    exception_type: str = Field(description="Exception class name")
    exception: BaseException | None = Field(
        default=None, exclude=True, repr=False, description="The original exception"
    )

    @classmethod
    def from_exception(cls, kind: FailureKind, exc: BaseException) -> CallFailure:
        return cls(
            kind=kind,
            message=str(exc),
            exception_type=type(exc).__name__,
            exception=exc,
        )


class CallResult(BaseModel):
    """Uniform outcome of one call, success or failure.

    response and failure are independent: an HTTP error status with a body
    sets both.
    """

    model_config = ConfigDict(extra="forbid")

    start: datetime = Field(description="When the call started (UTC)")
    end: datetime = Field(description="When the call ended (UTC)")
    duration: timedelta = Field(description="end - start")
    request: RequestSpec = Field(description="The request as sent")
    response: ResponseCapture | None = Field(default=None, description="Response, if any")
    failure: CallFailure | None = Field(default=None, description="Failure, if any")

    @property
    def succeeded(self) -> bool:
        return self.response is not None and self.failure is None

    @property
    def status_code(self) -> int | None:
        return self.response.status_code if self.response is not None else None
