# -----------------------------------------------------------------------------
# BLOB INFRASTRUCTURE - Azure Blob Storage REST
# -----------------------------------------------------------------------------
# Responsibility: Minimal Blob service client used by the blob-backed asset
# and output stores. Talks to the REST API directly with requests.
#
# Containers:
# - pack-<pack_id>   : assets of one pack, blob name = asset path
# - assets           : shared assets, blob name = asset id
# - template-output  : rendered outputs, blob name = <run_id>/<filename>
#
# Security:
# - Authenticates with a SAS token passed as query parameters
# - The SAS token is NEVER logged
# -----------------------------------------------------------------------------

import xml.etree.ElementTree as ET
from urllib.parse import parse_qsl, quote

import requests
from rich.console import Console

console = Console()

# Blob service REST version sent with every request
API_VERSION = "2021-08-06"

REQUEST_TIMEOUT_SECONDS = 30

METADATA_PREFIX = "x-ms-meta-"


class BlobError(Exception):
    """Raised when a Blob service request fails."""

    pass


class ContainerNotFound(BlobError):
    """Raised when the container does not exist."""

    pass


class BlobNotFound(BlobError):
    """Raised when the blob does not exist."""

    pass


class BlobClient:
    """
    Thin synchronous client for one storage account.

    All methods are blocking; async callers run them via asyncio.to_thread.
    """

    def __init__(
        self,
        account: str,
        sas_token: str,
        endpoint: str | None = None,
        timeout: int = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        """
        Initialize the client.

        Args:
            account: Storage account name.
            sas_token: Shared access signature, with or without leading '?'.
            endpoint: Override for the service URL (e.g. an Azurite emulator).
            timeout: Per-request timeout in seconds.
        """
        self._endpoint = (endpoint or f"https://{account}.blob.core.windows.net").rstrip("/")
        self._sas = dict(parse_qsl(sas_token.lstrip("?")))
        self._timeout = timeout
        self._session = requests.Session()

    def _url(self, container: str, blob: str | None = None) -> str:
        if blob is None:
            return f"{self._endpoint}/{quote(container)}"
        return f"{self._endpoint}/{quote(container)}/{quote(blob, safe='/')}"

    def _request(
        self,
        method: str,
        url: str,
        params: dict | None = None,
        headers: dict | None = None,
        data: bytes | None = None,
    ) -> requests.Response:
        merged_headers = {"x-ms-version": API_VERSION, **(headers or {})}
        try:
            return self._session.request(
                method,
                url,
                params={**self._sas, **(params or {})},
                headers=merged_headers,
                data=data,
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise BlobError(f"Blob request failed: {method} {url}: {e}") from e

    @staticmethod
    def _raise_for_status(response: requests.Response, what: str) -> None:
        if response.status_code < 300:
            return
        code = response.headers.get("x-ms-error-code", "")
        if response.status_code == 404:
            if code == "ContainerNotFound":
                raise ContainerNotFound(f"Container not found: {what}")
            raise BlobNotFound(f"Blob not found: {what}")
        raise BlobError(f"Blob service error {response.status_code} ({code}) for {what}")

    def list_blobs(self, container: str) -> list[str]:
        """
        List every blob name in a container, following continuation markers.

        Returns:
            Blob names in service order (lexicographic).
        """
        names: list[str] = []
        marker: str | None = None

        while True:
            params = {"restype": "container", "comp": "list"}
            if marker:
                params["marker"] = marker
            response = self._request("GET", self._url(container), params=params)
            if response.status_code == 404:
                raise ContainerNotFound(f"Container not found: {container}")
            self._raise_for_status(response, container)

            try:
                root = ET.fromstring(response.content)
            except ET.ParseError as e:
                raise BlobError(f"Malformed listing for {container}: {e}") from e

            names.extend(
                name.text for name in root.iterfind("./Blobs/Blob/Name") if name.text
            )
            marker = root.findtext("NextMarker")
            if not marker:
                return names

    def get_blob(self, container: str, blob: str) -> bytes:
        """Download a blob's content."""
        response = self._request("GET", self._url(container, blob))
        self._raise_for_status(response, f"{container}/{blob}")
        return response.content

    def get_metadata(self, container: str, blob: str) -> dict[str, str]:
        """Read user metadata (x-ms-meta-*) of a blob."""
        response = self._request("HEAD", self._url(container, blob))
        self._raise_for_status(response, f"{container}/{blob}")
        return {
            key[len(METADATA_PREFIX):].lower(): value
            for key, value in response.headers.items()
            if key.lower().startswith(METADATA_PREFIX)
        }

    def put_blob(
        self, container: str, blob: str, data: bytes, content_type: str = "image/png"
    ) -> None:
        """Upload data as a block blob, replacing any existing blob."""
        response = self._request(
            "PUT",
            self._url(container, blob),
            headers={"x-ms-blob-type": "BlockBlob", "Content-Type": content_type},
            data=data,
        )
        self._raise_for_status(response, f"{container}/{blob}")
        console.print(f"[dim][BLOB] Uploaded {container}/{blob} ({len(data)} bytes)[/dim]")
