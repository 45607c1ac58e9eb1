"""Async HTTP client for Kubernetes custom objects (Crossplane claims/releases).

Provides create, get, merge-patch and delete against
``/apis/{group}/{version}/namespaces/{namespace}/{plural}``. Auth uses a
service-account bearer token.

Every failure leaves the client as a ``KubernetesAPIError``: error
responses are decoded from the apiserver's ``Status`` object, transport
failures carry status 0, and a success response that is not a JSON object
raises ``KubernetesMalformedResponseError``. Throttling, transient server
errors and transport failures are retried; the wait honours ``Retry-After``
or the Status ``details.retryAfterSeconds`` hint when the apiserver sends
one.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Throttled (429) or apiserver/etcd temporarily unavailable.
_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_DEFAULT_MAX_RETRIES = 3
_DEFAULT_BASE_DELAY = 1.0  # seconds
_DEFAULT_MAX_DELAY = 30.0  # seconds

_MERGE_PATCH = 'application/merge-patch+json'


# ── Exception hierarchy ─────────────────────────────────────────


class KubernetesAPIError(Exception):
    """Base exception for Kubernetes API errors.

    ``reason`` is the machine-readable ``Status.reason`` (``NotFound``,
    ``AlreadyExists``, ``Forbidden``...) when the apiserver supplied one.
    """

    def __init__(
        self,
        status_code: int,
        message: str = '',
        *,
        reason: str = '',
        response_body: str = '',
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.reason = reason
        self.response_body = response_body
        super().__init__(f'Kubernetes API error {status_code}: {message}')

    @property
    def transient(self) -> bool:
        """Whether repeating the same call later may succeed."""
        return self.status_code == 0 or self.status_code in _RETRYABLE_STATUS_CODES


class KubernetesNotFoundError(KubernetesAPIError):
    """Custom object not found (404)."""

    def __init__(self, message: str = 'object not found', **kwargs: Any) -> None:
        kwargs.setdefault('reason', 'NotFound')
        super().__init__(404, message, **kwargs)


class KubernetesTimeoutError(KubernetesAPIError):
    """Request to the API server timed out."""

    def __init__(self, message: str = 'Request timed out') -> None:
        super().__init__(0, message)


class KubernetesConnectionError(KubernetesAPIError):
    """The API server could not be reached (refused, reset, DNS or TLS)."""

    def __init__(self, message: str = 'connection failed') -> None:
        super().__init__(0, message)


class KubernetesMalformedResponseError(KubernetesAPIError):
    """A success response whose body is not a JSON object.

    Usually a proxy in front of the apiserver answering in its place.
    """

    @property
    def transient(self) -> bool:
        return True


def _transport_failure(error: httpx.TransportError) -> KubernetesAPIError:
    detail = str(error) or type(error).__name__
    if isinstance(error, httpx.TimeoutException):
        return KubernetesTimeoutError(detail)
    return KubernetesConnectionError(detail)


def _status_object(resp: httpx.Response) -> dict[str, Any]:
    """The decoded ``Status`` body of a response, or {} when there is none."""
    try:
        payload = resp.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _status_error(resp: httpx.Response) -> KubernetesAPIError:
    body = resp.text
    status = _status_object(resp)
    message = status.get('message') or (body[:200] if body else f'HTTP {resp.status_code}')
    reason = status.get('reason') or ''
    if resp.status_code == 404:
        return KubernetesNotFoundError(
            message, reason=reason or 'NotFound', response_body=body,
        )
    return KubernetesAPIError(
        resp.status_code, message, reason=reason, response_body=body,
    )


# ── Client ───────────────────────────────────────────────────────


class KubernetesCustomObjectsClient:
    """Namespaced custom-object operations for one resource type."""

    def __init__(
        self,
        *,
        api_url: str,
        group: str,
        version: str,
        plural: str,
        namespace: str = 'default',
        bearer_token: str = '',
        http_client: httpx.AsyncClient | None = None,
        verify_tls: bool = True,
        timeout_seconds: float = 30.0,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        base_delay: float = _DEFAULT_BASE_DELAY,
        max_delay: float = _DEFAULT_MAX_DELAY,
    ) -> None:
        if not api_url:
            raise ValueError('api_url is required')

        self._base_url = api_url.rstrip('/')
        self.group = group
        self.version = version
        self.plural = plural
        self.namespace = namespace
        self._bearer_token = bearer_token
        self._client = http_client or httpx.AsyncClient(verify=verify_tls)
        self._timeout = float(timeout_seconds)
        self._max_retries = max(0, max_retries)
        self._base_delay = base_delay
        self._max_delay = max_delay

    @property
    def api_version(self) -> str:
        return f'{self.group}/{self.version}'

    def _collection_path(self) -> str:
        return (
            f'/apis/{self.group}/{self.version}'
            f'/namespaces/{self.namespace}/{self.plural}'
        )

    def _headers(self, content_type: str | None = None) -> dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self._bearer_token:
            headers['Authorization'] = f'Bearer {self._bearer_token}'
        if content_type:
            headers['Content-Type'] = content_type
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        content_type: str | None = None,
    ) -> httpx.Response:
        """Send one API call, retrying throttling and transient failures.

        Returns the final response, which may still be an error status.
        Raises a status-0 ``KubernetesAPIError`` if the last attempt never
        got a response.
        """
        url = f'{self._base_url}{path}'
        headers = self._headers(content_type)
        attempts = self._max_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                resp = await self._client.request(
                    method, url, headers=headers, json=json, timeout=self._timeout,
                )
            except httpx.TransportError as e:
                failure = _transport_failure(e)
                if attempt == attempts:
                    raise failure from e
                problem = failure.message
                delay = self._jittered_delay(attempt)
            else:
                if resp.status_code not in _RETRYABLE_STATUS_CODES or attempt == attempts:
                    return resp
                problem = f'HTTP {resp.status_code}'
                delay = self._hinted_delay(resp, attempt)

            logger.warning(
                'Kubernetes %s %s/%s failed (%s), attempt %d/%d, retrying in %.1fs',
                method,
                self.plural,
                path.rsplit('/', 1)[-1],
                problem,
                attempt,
                attempts,
                delay,
                extra={'plural': self.plural, 'attempt': attempt},
            )
            await asyncio.sleep(delay)

        raise AssertionError('unreachable: the last attempt returns or raises')

    def _jittered_delay(self, attempt: int) -> float:
        """Full jitter over an exponentially growing window."""
        window = min(self._base_delay * (2 ** (attempt - 1)), self._max_delay)
        return random.uniform(0, window)

    def _hinted_delay(self, resp: httpx.Response, attempt: int) -> float:
        """Wait the apiserver asked for, bounded by ``max_delay``."""
        hint: Any = resp.headers.get('retry-after')
        if hint is None:
            details = _status_object(resp).get('details')
            if isinstance(details, dict):
                hint = details.get('retryAfterSeconds')
        try:
            seconds = float(hint)
        except (TypeError, ValueError):
            return self._jittered_delay(attempt)
        return min(max(seconds, 0.0), self._max_delay)

    @staticmethod
    def _object(resp: httpx.Response) -> dict[str, Any]:
        """Decode a response into a custom object, raising on any error."""
        if resp.status_code >= 400:
            raise _status_error(resp)
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise KubernetesMalformedResponseError(
                resp.status_code,
                f'expected a JSON object, got {resp.text[:80]!r}',
                response_body=resp.text,
            )
        return payload

    # ── Public API ───────────────────────────────────────────────

    async def create(self, body: dict[str, Any]) -> dict[str, Any]:
        result = self._object(await self._send(
            'POST', self._collection_path(), json=body,
        ))
        logger.info(
            'Custom object created: %s/%s',
            self.plural,
            body.get('metadata', {}).get('name'),
            extra={'plural': self.plural},
        )
        return result

    async def get(self, name: str) -> dict[str, Any]:
        """Fetch an object by name.

        Raises KubernetesNotFoundError if it doesn't exist.
        """
        return self._object(await self._send(
            'GET', f'{self._collection_path()}/{name}',
        ))

    async def patch(self, name: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Apply a JSON merge-patch to an existing object."""
        return self._object(await self._send(
            'PATCH',
            f'{self._collection_path()}/{name}',
            json=patch,
            content_type=_MERGE_PATCH,
        ))

    async def delete(self, name: str) -> None:
        """Delete an object by name.

        Raises KubernetesNotFoundError if it doesn't exist. The response
        body (a Status or the object being finalized) is not inspected.
        """
        resp = await self._send('DELETE', f'{self._collection_path()}/{name}')
        if resp.status_code >= 400:
            raise _status_error(resp)
        logger.info(
            'Custom object deleted: %s/%s',
            self.plural,
            name,
            extra={'plural': self.plural},
        )
