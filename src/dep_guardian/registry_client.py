"""npm registry client with rate limiting, retries and read-through caching.

Purpose
-------
Fetch package metadata (dist-tags, per-version license and publish time)
from an npm-compatible registry without exceeding a request budget, while
riding out transient failures and never asking twice inside the cache TTL.

Contents
--------
* :class:`RegistryClient` - Async client, one cache and one limiter per instance
* :func:`metadata_from_packument` - Packument → :class:`RegistryMetadata`
* :func:`metadata_to_dict` / :func:`metadata_from_dict` - Cache codec

System Role
-----------
Second stage of the analysis pipeline: the analyzer hands it the manifest's
package names and gets back one :class:`RegistryResult` per name.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError as SchemaValidationError

from . import __init__conf__
from .cache_store import DEFAULT_TTL, CacheStore
from .errors import DependencyGuardianError, NetworkError, NotFoundError, ValidationError
from .models import CacheStats, ErrorKind, FetchStatus, RegistryMetadata, RegistryResult, VersionInfo
from .rate_limiter import RateLimit, SlidingWindowRateLimiter
from .retry import RetryPolicy, retry_async
from .schemas import PackumentSchema

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable
    from pathlib import Path
    from types import TracebackType

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"
DEFAULT_TIMEOUT = 30.0
CACHE_KEY_PREFIX = "npm:"
MAX_NAME_LENGTH = 214

_RE_PACKAGE_NAME = re.compile(r"^(?:@[^\s/@]+/)?[^\s/@][^\s/]*$")


def validate_package_name(name: object) -> str:
    """Return ``name`` stripped, or raise :class:`ValidationError`.

    Args:
        name: Candidate package name (plain or ``@scope/name``).

    Raises:
        ValidationError: If the name is empty, not a string or malformed.
    """
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Invalid package name: must be a non-empty string", package=None)
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH or not _RE_PACKAGE_NAME.match(name):
        raise ValidationError(f"Invalid package name: {name!r}", package=name)
    return name


def package_url(registry_url: str, name: str) -> str:
    """Build the packument URL; scoped names keep ``@`` and encode ``/``."""
    return f"{registry_url.rstrip('/')}/{quote(name, safe='@')}"


def metadata_from_packument(name: str, packument: PackumentSchema) -> RegistryMetadata:
    """Convert a validated packument into domain metadata."""
    versions = {
        version: VersionInfo(
            license=info.effective_license,
            published_at=packument.time.get(version),
        )
        for version, info in packument.versions.items()
    }
    return RegistryMetadata(
        name=packument.name or name,
        latest_version=packument.dist_tags.get("latest") or None,
        versions=versions,
        license=packument.license,
    )


def metadata_to_dict(metadata: RegistryMetadata) -> dict[str, Any]:
    """Encode metadata as a JSON-compatible dict for cache persistence."""
    return {
        "name": metadata.name,
        "latest_version": metadata.latest_version,
        "license": metadata.license,
        "versions": {
            version: {"license": info.license, "published_at": info.published_at}
            for version, info in metadata.versions.items()
        },
    }


def metadata_from_dict(data: dict[str, Any]) -> RegistryMetadata:
    """Inverse of :func:`metadata_to_dict`."""
    return RegistryMetadata(
        name=data["name"],
        latest_version=data.get("latest_version"),
        license=data.get("license"),
        versions={
            version: VersionInfo(license=info.get("license"), published_at=info.get("published_at"))
            for version, info in (data.get("versions") or {}).items()
        },
    )


def create_metadata_cache(path: Path | str | None = None, ttl: float = DEFAULT_TTL) -> CacheStore:
    """Create a cache store able to persist :class:`RegistryMetadata` values."""
    return CacheStore(path, default_ttl=ttl, encode=metadata_to_dict, decode=metadata_from_dict)


def _is_retryable_status(status_code: int | None) -> bool:
    return status_code is not None and (status_code == 429 or status_code >= 500)


def _is_transient(exc: BaseException) -> bool:
    """Timeouts, transport errors, 429 and 5xx are worth another attempt."""
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, NetworkError) and _is_retryable_status(exc.status_code)


def _cache_key(name: str) -> str:
    return f"{CACHE_KEY_PREFIX}{name}"


def _name_from_key(key: str) -> str:
    return key[len(CACHE_KEY_PREFIX) :]


def _failure(name: str, exc: DependencyGuardianError) -> RegistryResult:
    status = FetchStatus.NOT_FOUND if isinstance(exc, NotFoundError) else FetchStatus.FAILED
    return RegistryResult(name=name, status=status, error=str(exc), error_kind=exc.kind)


class RegistryClient:
    """Async npm registry client.

    Attributes:
        registry_url: Base URL of the registry.
        timeout: Per-request timeout in seconds.
        retry_policy: Retry budget for transient failures.
        rate_limiter: Sliding-window limiter applied to every HTTP attempt.
        cache: Read-through cache of successful lookups.
        cache_ttl: TTL of cached metadata in seconds.
    """

    def __init__(
        self,
        *,
        registry_url: str = DEFAULT_REGISTRY_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        rate_limit: RateLimit | None = None,
        cache: CacheStore | None = None,
        cache_ttl: float = DEFAULT_TTL,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if timeout <= 0:
            raise ValidationError(f"timeout must be positive, got {timeout}")
        limit = rate_limit or RateLimit()
        self.registry_url = registry_url.rstrip("/")
        self.timeout = timeout
        self.retry_policy = RetryPolicy(max_retries=max_retries, base_delay=retry_delay)
        self.rate_limiter = SlidingWindowRateLimiter(limit.count, limit.window, sleep=sleep)
        self.cache = cache if cache is not None else create_metadata_cache(ttl=cache_ttl)
        self.cache_ttl = cache_ttl
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    def __repr__(self) -> str:
        return (
            f"RegistryClient(registry_url={self.registry_url!r}, timeout={self.timeout}, "
            f"max_retries={self.retry_policy.max_retries})"
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _get_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": f"{__init__conf__.name}/{__init__conf__.version}",
        }

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._get_headers(),
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client; a later call opens a new one."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> RegistryClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def _request(self, name: str) -> RegistryMetadata:
        """Perform one rate-limited GET and interpret the response."""
        await self.rate_limiter.acquire()
        url = package_url(self.registry_url, name)
        logger.debug("GET %s", url)
        response = await self._get_client().get(url)

        if response.status_code == 404:
            raise NotFoundError(f"Package {name} not found", package=name)
        if response.status_code >= 400:
            raise NetworkError(
                f"Registry answered {response.status_code} for {name}",
                package=name,
                status_code=response.status_code,
            )
        return self._parse_response(name, response)

    def _parse_response(self, name: str, response: httpx.Response) -> RegistryMetadata:
        try:
            packument = PackumentSchema.model_validate(response.json())
        except (ValueError, SchemaValidationError) as exc:
            raise NetworkError(f"Invalid package info returned for {name}: {exc}", package=name) from exc
        return metadata_from_packument(name, packument)

    async def _fetch_uncached(self, name: str) -> RegistryMetadata:
        """Fetch with retries; every httpx error surfaces as :class:`NetworkError`."""
        attempts = 0

        async def attempt() -> RegistryMetadata:
            nonlocal attempts
            attempts += 1
            return await self._request(name)

        try:
            return await retry_async(
                attempt,
                self.retry_policy,
                is_transient=_is_transient,
                sleep=self._sleep,
                describe=f"Fetching {name}",
            )
        except httpx.HTTPError as exc:
            raise NetworkError(
                f"Failed to fetch package info for {name} after {attempts} attempts: {exc!r}",
                package=name,
                attempts=attempts,
            ) from exc
        except NetworkError as exc:
            if attempts > 1:
                raise NetworkError(
                    f"Failed to fetch package info for {name} after {attempts} attempts: {exc}",
                    package=name,
                    status_code=exc.status_code,
                    attempts=attempts,
                ) from exc
            raise

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_metadata(self, name: str) -> RegistryMetadata:
        """Return registry metadata for ``name``.

        Successful responses are cached for :attr:`cache_ttl`; concurrent
        calls for the same name share one network fetch.

        Raises:
            ValidationError: If ``name`` is empty or malformed (no network call).
            NotFoundError: If the registry has no such package.
            NetworkError: If the registry could not be reached after retries.
        """
        name = validate_package_name(name)
        return await self.cache.get_or_fetch(
            _cache_key(name),
            lambda: self._fetch_uncached(name),
            self.cache_ttl,
        )

    async def lookup(self, name: str) -> RegistryResult:
        """Like :meth:`fetch_metadata` but reports not-found and failures as results.

        Raises:
            ValidationError: If ``name`` is empty or malformed.
        """
        try:
            metadata = await self.fetch_metadata(name)
        except (NotFoundError, NetworkError) as exc:
            logger.debug("Lookup of %s failed: %s", name, exc)
            return _failure(name, exc)
        return RegistryResult(name=name, status=FetchStatus.FOUND, metadata=metadata)

    async def _lookup_uncached(self, name: str) -> RegistryResult:
        try:
            metadata = await self._fetch_uncached(name)
        except (NotFoundError, NetworkError) as exc:
            logger.debug("Lookup of %s failed: %s", name, exc)
            return _failure(name, exc)
        return RegistryResult(name=name, status=FetchStatus.FOUND, metadata=metadata)

    async def lookup_many(self, names: Iterable[str]) -> dict[str, RegistryResult]:
        """Look up many packages with one batched fetch for the cache misses.

        Misses are fetched concurrently, paced by the rate limiter. Invalid
        names come back as failed results instead of raising.

        Returns:
            Mapping of each distinct input name to its result, in input order.
        """
        ordered = list(dict.fromkeys(names))
        results: dict[str, RegistryResult] = {}
        valid: dict[str, str] = {}
        for name in ordered:
            try:
                valid[name] = validate_package_name(name)
            except ValidationError as exc:
                results[name] = RegistryResult(
                    name=name, status=FetchStatus.FAILED, error=str(exc), error_kind=ErrorKind.VALIDATION
                )

        outcomes: dict[str, RegistryResult] = {}

        async def batch(keys: list[str]) -> dict[str, RegistryMetadata]:
            batch_names = [_name_from_key(key) for key in keys]
            logger.info("Fetching metadata for %d packages", len(batch_names))
            fetched = await asyncio.gather(*(self._lookup_uncached(n) for n in batch_names))
            found: dict[str, RegistryMetadata] = {}
            for key, result in zip(keys, fetched, strict=True):
                outcomes[result.name] = result
                if result.metadata is not None:
                    found[key] = result.metadata
            return found

        keys = [_cache_key(clean_name) for clean_name in valid.values()]
        cached = await self.cache.get_or_fetch_many(keys, batch, self.cache_ttl)

        for name, clean_name in valid.items():
            key = _cache_key(clean_name)
            if key in cached:
                results[name] = RegistryResult(name=clean_name, status=FetchStatus.FOUND, metadata=cached[key])
            elif clean_name in outcomes:
                results[name] = outcomes[clean_name]
            else:
                # In flight elsewhere and failed there; ask again on our own
                results[name] = await self.lookup(clean_name)

        return {name: results[name] for name in ordered}

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def load_cache(self) -> int:
        return self.cache.load()

    def persist_cache(self) -> bool:
        return self.cache.persist()


__all__ = [
    "CACHE_KEY_PREFIX",
    "DEFAULT_REGISTRY_URL",
    "DEFAULT_TIMEOUT",
    "RegistryClient",
    "create_metadata_cache",
    "metadata_from_dict",
    "metadata_from_packument",
    "metadata_to_dict",
    "package_url",
    "validate_package_name",
]
