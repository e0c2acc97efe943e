"""
IPFS RPC client module for cidsync.
Handles the HTTP calls made against source and destination IPFS endpoints.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Iterator, Optional

import httpx

from cidsync.core.batch import BatchConfig
from cidsync.core.cid import CIDVersion

logger = logging.getLogger(__name__)

# IPFS RPC API paths (the RPC API only accepts POST)
IPFS_LIST_ENDPOINT = "/api/v0/pin/ls"
IPFS_CAT_ENDPOINT = "/api/v0/cat"
IPFS_ADD_ENDPOINT = "/api/v0/add"


class IPFSError(Exception):
    """Base class for IPFS endpoint errors"""

    pass


class FetchError(IPFSError):
    """Raised when an object cannot be fetched from the source"""

    pass


class UploadError(IPFSError):
    """Raised when the destination rejects or cannot receive an upload"""

    pass


class AcquisitionError(IPFSError):
    """Raised when the list of CIDs cannot be obtained"""

    pass


class ResponseDecodeError(IPFSError):
    """Raised when an add response cannot be decoded"""

    pass


@dataclass
class AddResponse:
    """Decoded response of the add API"""

    hash: str
    name: str = ""
    size: str = ""


def decode_add_response(body: bytes) -> AddResponse:
    """
    Decode the body returned by the add API

    The add API may stream several JSON objects (one per line); the last
    one describes the added object.

    Args:
        body: Raw response body

    Returns:
        AddResponse with the hash assigned by the destination
    """
    lines = [line for line in body.decode("utf-8", errors="replace").splitlines() if line.strip()]
    if not lines:
        raise ResponseDecodeError("Empty add response")

    try:
        data = json.loads(lines[-1])
    except json.JSONDecodeError as e:
        raise ResponseDecodeError(f"Error unmarshaling the response: {e}") from e

    if not isinstance(data, dict):
        raise ResponseDecodeError(f"Unexpected add response: {lines[-1]}")

    return AddResponse(
        hash=data.get("Hash") or "",
        name=data.get("Name") or "",
        size=str(data.get("Size") or ""),
    )


def _error_message(response: httpx.Response) -> str:
    """Extract the message of an IPFS error response"""
    try:
        data = response.json()
        if isinstance(data, dict) and data.get("Message"):
            return data["Message"]
    except (json.JSONDecodeError, UnicodeDecodeError):
        pass
    return response.text.strip() or response.reason_phrase


class IPFSClient:
    """Client for a single IPFS RPC endpoint"""

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        retries: int = BatchConfig.DEFAULT_RETRIES,
        retry_backoff: float = BatchConfig.RETRY_BACKOFF,
        max_connections: int = BatchConfig.MAX_CIDS_PER_BATCH,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize IPFS client

        Args:
            base_url: Endpoint base address, e.g. http://127.0.0.1:5001
            timeout: Request timeout in seconds (None waits forever)
            retries: Extra attempts for transport errors and 5xx responses
            retry_backoff: Base delay between retries in seconds
            max_connections: Connection pool size, at least the batch size
            transport: Custom httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = max(0, retries)
        self.retry_backoff = retry_backoff
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            limits=httpx.Limits(max_connections=max(1, max_connections)),
            transport=transport,
        )

    def __enter__(self) -> "IPFSClient":
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        """Close the underlying connection pool"""
        self._client.close()

    def _post(self, path: str, error_cls: type, **kwargs) -> httpx.Response:
        """POST to the endpoint, retrying transport errors and 5xx responses"""
        attempt = 0
        while True:
            try:
                response = self._client.post(path, **kwargs)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status < 500 or attempt >= self.retries:
                    raise error_cls(
                        f"{status} {e.response.reason_phrase}: {_error_message(e.response)}"
                    ) from e
                reason = f"status {status}"
            except httpx.HTTPError as e:
                if attempt >= self.retries:
                    raise error_cls(f"{type(e).__name__}: {e}") from e
                reason = str(e)

            attempt += 1
            logger.debug(
                f"Retrying {self.base_url}{path} ({attempt}/{self.retries}) after {reason}"
            )
            time.sleep(self.retry_backoff * attempt)

    def cat(self, cid: str) -> bytes:
        """
        Fetch the content of an object

        Args:
            cid: CID of the object

        Returns:
            bytes: Object content
        """
        response = self._post(IPFS_CAT_ENDPOINT, FetchError, params={"arg": cid})
        return response.content

    def add(self, data: bytes, version: CIDVersion, filename: str = "file") -> bytes:
        """
        Add (and pin) an object

        Args:
            data: Object content
            version: CID version the endpoint should use
            filename: Name of the multipart file field

        Returns:
            bytes: Raw response body, see decode_add_response
        """
        response = self._post(
            IPFS_ADD_ENDPOINT,
            UploadError,
            params={"cid-version": version.value},
            files={"file": (filename, data, "application/octet-stream")},
        )
        return response.content

    def pin_ls(self) -> Iterator[str]:
        """
        Stream the CIDs pinned on the endpoint

        Yields:
            str: One CID per pinned object
        """
        try:
            with self._client.stream(
                "POST", IPFS_LIST_ENDPOINT, params={"stream": "true"}
            ) as response:
                if response.is_error:
                    response.read()
                    raise AcquisitionError(
                        f"{response.status_code} {response.reason_phrase}: "
                        f"{_error_message(response)}"
                    )

                for line in response.iter_lines():
                    if not line.strip():
                        continue
                    try:
                        record = json.loads(line)
                        cid = record["Cid"]
                    except (json.JSONDecodeError, KeyError, TypeError) as e:
                        logger.warning(f"Error unmarshaling the response: {e}; line: {line!r}")
                        continue
                    yield cid
        except httpx.HTTPError as e:
            raise AcquisitionError(f"Failed to list CIDs from {self.base_url}: {e}") from e
