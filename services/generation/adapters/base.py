"""
Base class for provider adapters.

An adapter translates the abstract submit / poll / quota calls into one
provider family's wire format and maps that provider's status vocabulary into
JobState. Adapters never retry: retries and fallback belong to the
FallbackChain and the orchestrator's poll loop.
"""

import logging
import mimetypes
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from ..errors import ErrorKind, GenerationError
from ..materializer import decode_data_uri
from ..models import (
    MediaKind,
    PollStatus,
    ProviderCapabilities,
    QuotaInfo,
    ResolvedProviderConfig,
    Submission,
    SubmitPayload,
    TaskHandle,
)

logger = logging.getLogger(__name__)


def status_to_kind(status_code: int) -> ErrorKind:
    """Map an HTTP error status to the error taxonomy."""
    if status_code in (401, 403):
        return ErrorKind.AUTH_FAILED
    if status_code == 402:
        return ErrorKind.QUOTA_EXHAUSTED
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if 400 <= status_code < 500:
        return ErrorKind.BAD_REQUEST
    return ErrorKind.UNREACHABLE


def extract_error_message(response: httpx.Response) -> str:
    """Pull the most useful error text out of a provider error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message") or error.get("msg") or error.get("code")
            if message:
                return str(message)
        if isinstance(error, str) and error:
            return error
        for key in ("message", "msg", "detail"):
            if body.get(key):
                return str(body[key])
    return str(body)[:500]


def as_dict(value: Any) -> dict:
    """``value`` if it is a JSON object, else an empty dict."""
    return value if isinstance(value, dict) else {}


def failure_text(error: Any, default: str) -> str:
    """Failure text from an ``error`` field that may be an object, a string or missing."""
    if isinstance(error, dict):
        message = error.get("message") or error.get("msg") or error.get("code")
        return str(message) if message else default
    if error:
        return str(error)
    return default


class ProviderAdapter(ABC):
    """
    Abstract adapter for one provider family.

    Subclasses set ``name``, ``default_base_url`` and ``capabilities`` and
    implement ``submit`` and ``poll``. ``quota`` is optional.
    """

    name: str = ""
    default_base_url: str = ""
    capabilities: ProviderCapabilities

    def __init__(
        self,
        config: ResolvedProviderConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        default_timeout: Optional[float] = None,
    ):
        self.config = config
        self.timeout = (
            config.request_timeout
            or default_timeout
            or self.capabilities.default_timeout
        )
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def base_url(self) -> str:
        return (self.config.base_url or self.default_base_url).rstrip("/")

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key.get_secret_value()}"}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def candidate_models(self, kind: MediaKind) -> list[str]:
        """Ordered model list for ``kind``: preferred model, then fallbacks."""
        fallbacks = self.config.fallback_models
        if fallbacks is None:
            fallbacks = self.capabilities.models_for(kind)

        models = []
        if self.config.preferred_model:
            models.append(self.config.preferred_model)
        for model in fallbacks:
            if model not in models:
                models.append(model)
        return models

    async def _request(
        self,
        method: str,
        path: str,
        *,
        model: Optional[str] = None,
        **kwargs: Any,
    ) -> dict:
        """
        Send a request and return the decoded JSON body.

        Raises:
            GenerationError: with the kind mapped from the transport failure
        """
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        headers = {**self._auth_headers(), **kwargs.pop("headers", {})}
        client = await self._get_client()

        try:
            response = await client.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise GenerationError(
                f"{self.name} request timed out: {e}",
                kind=ErrorKind.UNREACHABLE, provider=self.name, model=model,
            ) from e
        except httpx.RequestError as e:
            raise GenerationError(
                f"{self.name} connection error: {e}",
                kind=ErrorKind.UNREACHABLE, provider=self.name, model=model,
            ) from e

        if response.status_code >= 400:
            message = extract_error_message(response)
            logger.debug(f"{self.name} {method} {path} -> {response.status_code}: {message}")
            raise GenerationError(
                f"HTTP {response.status_code}: {message}",
                kind=status_to_kind(response.status_code),
                provider=self.name,
                status_code=response.status_code,
                model=model,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise GenerationError(
                f"{self.name} returned an unparseable response: {response.text[:200]}",
                kind=ErrorKind.UNREACHABLE, provider=self.name, model=model,
            ) from e

        if not isinstance(body, dict):
            raise GenerationError(
                f"{self.name} returned an unexpected response shape",
                kind=ErrorKind.UNREACHABLE, provider=self.name, model=model,
            )
        return body

    async def _load_reference(self, uri: str) -> tuple[bytes, str]:
        """Return (bytes, mime type) for a reference asset URI."""
        if uri.startswith("data:"):
            header = uri.split(",", 1)[0]
            mime = header[5:].split(";", 1)[0] or "image/png"
            try:
                return decode_data_uri(uri), mime
            except ValueError as e:
                raise GenerationError(
                    "reference image is not valid base64",
                    kind=ErrorKind.BAD_REQUEST, provider=self.name,
                ) from e

        client = await self._get_client()
        try:
            response = await client.get(uri, timeout=self.timeout, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise GenerationError(
                f"could not fetch reference image: HTTP {e.response.status_code}",
                kind=ErrorKind.BAD_REQUEST, provider=self.name,
            ) from e
        except httpx.RequestError as e:
            raise GenerationError(
                f"could not fetch reference image: {e}",
                kind=ErrorKind.UNREACHABLE, provider=self.name,
            ) from e

        mime = response.headers.get("content-type", "").split(";", 1)[0]
        if not mime.startswith("image/"):
            mime = mimetypes.guess_type(uri)[0] or "image/png"
        return response.content, mime

    def _unsupported(self, payload: SubmitPayload, what: str) -> GenerationError:
        return GenerationError(
            f"{self.name} does not support {what}",
            kind=ErrorKind.BAD_REQUEST, provider=self.name, model=payload.model,
        )

    def _check_kind(self, payload: SubmitPayload):
        if not self.capabilities.supports(payload.kind):
            raise self._unsupported(payload, f"{payload.kind.value} generation")
        if payload.reference_uri and not self.capabilities.supports_reference(payload.kind):
            raise self._unsupported(payload, f"reference-conditioned {payload.kind.value} generation")

    @abstractmethod
    async def submit(self, payload: SubmitPayload) -> Submission:
        """Submit one generation task. Exactly one outbound provider call; no retries."""
        ...

    @abstractmethod
    async def poll(self, handle: TaskHandle) -> PollStatus:
        """Fetch the current status of a task. Side-effect free."""
        ...

    async def quota(self) -> Optional[QuotaInfo]:
        """Account quota, or None when the provider has no quota endpoint."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base_url={self.base_url!r})"
