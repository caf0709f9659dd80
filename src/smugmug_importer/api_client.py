"""SmugMug API client with retry logic using httpx for async HTTP calls."""

import hashlib
import logging
import mimetypes
import re
import uuid
from typing import Any, Generator

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from smugmug_importer.models import AlbumHandle, SourcePhoto, UploadResponse

logger = logging.getLogger(__name__)

# SmugMug API v2 endpoints
SMUGMUG_API_BASE_URL = "https://api.smugmug.com"
SMUGMUG_UPLOAD_URL = "https://upload.smugmug.com/"

URL_NAME_MAX_LENGTH = 60
URL_NAME_HASH_LENGTH = 8


class SmugMugAPIError(Exception):
    """Base exception for SmugMug API errors."""

    pass


class RateLimitError(SmugMugAPIError):
    """Exception raised when hitting rate limits."""

    pass


class ServerError(SmugMugAPIError):
    """Exception raised for 5xx server errors and network failures."""

    pass


class BearerTokenAuth(httpx.Auth):
    """Attach a pre-issued access token to every request."""

    def __init__(self, access_token: str) -> None:
        self.access_token = access_token

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self.access_token}"
        yield request


def url_name(name: str, suffix: str | None = None) -> str:
    """Derive a SmugMug UrlName from an album name.

    UrlNames must start with a capital letter and contain only letters,
    digits and hyphens. A slug too long for SmugMug is cut short and tagged
    with a hash of the full slug, so names sharing a long prefix (such as
    deep overflow albums) still get distinct UrlNames.

    Args:
        name: Album name
        suffix: Extra tag appended to the slug, used to sidestep a UrlName
            that is already taken
    """
    slug = re.sub(r"[^A-Za-z0-9]+", "-", name).strip("-")
    if not slug or not slug[0].isalpha():
        slug = f"Album-{slug}".rstrip("-")
    if suffix is None and len(slug) > URL_NAME_MAX_LENGTH:
        suffix = hashlib.sha1(slug.encode("utf-8")).hexdigest()[:URL_NAME_HASH_LENGTH]
    if suffix:
        slug = slug[: URL_NAME_MAX_LENGTH - len(suffix) - 1].rstrip("-") + f"-{suffix}"
    slug = slug[:URL_NAME_MAX_LENGTH].rstrip("-")
    return slug[0].upper() + slug[1:]


class SmugMugClient:
    """Client for the SmugMug API v2 using httpx.

    Authentication is delegated to an ``httpx.Auth`` implementation, so an
    OAuth 1.0a signer can be plugged in where a bearer token is not enough.
    """

    def __init__(
        self,
        auth: httpx.Auth | None = None,
        timeout: float = 30.0,
        api_base_url: str = SMUGMUG_API_BASE_URL,
        upload_url: str = SMUGMUG_UPLOAD_URL,
    ) -> None:
        """Initialize SmugMug API client.

        Args:
            auth: Authentication flow applied to every request
            timeout: Per-request timeout in seconds
            api_base_url: Base URL of the SmugMug API
            upload_url: URL of the SmugMug upload endpoint
        """
        self.auth = auth
        self.timeout = timeout
        self.api_base_url = api_base_url.rstrip("/")
        self.upload_url = upload_url
        self.nickname: str | None = None
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "SmugMugClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            auth=self.auth,
            timeout=self.timeout,
            headers={"Accept": "application/json"},
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
        self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the httpx AsyncClient instance.

        Raises:
            RuntimeError: If client is used outside of async context manager
        """
        if self._client is None:
            raise RuntimeError("Client must be used within async context manager")
        return self._client

    @retry(
        retry=retry_if_exception_type((RateLimitError, ServerError)),
        wait=wait_exponential(multiplier=1, min=1, max=60),
        stop=stop_after_attempt(5),
        reraise=True,
    )
    async def verify_session(self) -> str:
        """Check the credentials and remember the authenticated user's nickname.

        Returns:
            The user's nickname

        Raises:
            SmugMugAPIError: If the session cannot be established
        """
        url = f"{self.api_base_url}/api/v2!authuser"
        try:
            response = await self.client.get(url)
        except httpx.RequestError as e:
            logger.warning(f"Network error while verifying session, will retry: {e}")
            raise ServerError(f"Network error: {e}") from e

        result = self._parse_json_response(response, "verifying session")
        if response.status_code >= 400:
            self._handle_error_response(response.status_code, result, "verifying session")

        try:
            nickname = result["Response"]["User"]["NickName"]
        except (KeyError, TypeError) as e:
            raise SmugMugAPIError(f"Unexpected authuser response: {result}") from e

        self.nickname = nickname
        logger.info(f"Authenticated as SmugMug user '{nickname}'")
        return nickname

    @retry(
        retry=retry_if_exception_type((RateLimitError, ServerError)),
        wait=wait_exponential(multiplier=1, min=1, max=60),
        stop=stop_after_attempt(5),
        reraise=True,
    )
    async def create_album(
        self, name: str, description: str | None = None
    ) -> AlbumHandle:
        """Create a new private album in the user's root folder.

        Args:
            name: Album name
            description: Album description

        Returns:
            Handle of the created album

        Raises:
            SmugMugAPIError: If album creation fails
            RateLimitError: If rate limit is exceeded
            ServerError: If server error occurs
        """
        if self.nickname is None:
            raise SmugMugAPIError("Session must be verified before creating albums")

        url = f"{self.api_base_url}/api/v2/folder/user/{self.nickname}!albums"
        payload = {"Name": name, "UrlName": url_name(name), "Privacy": "Private"}
        if description:
            payload["Description"] = description

        response = await self._post_album(url, payload)
        if response.status_code == 409:
            # Albums with the same name share a UrlName
            payload["UrlName"] = url_name(name, suffix=uuid.uuid4().hex[:URL_NAME_HASH_LENGTH])
            logger.info(f"UrlName for album '{name}' is taken, using {payload['UrlName']}")
            response = await self._post_album(url, payload)

        result = self._parse_json_response(response, f"creating album '{name}'")
        if response.status_code >= 400:
            self._handle_error_response(response.status_code, result, f"creating album '{name}'")

        try:
            album = result["Response"]["Album"]
            handle = AlbumHandle(
                uri=album["Uri"],
                name=album.get("Name", name),
                description=album.get("Description", description),
                album_key=album.get("AlbumKey"),
                web_url=album.get("WebUri"),
            )
        except (KeyError, TypeError) as e:
            raise SmugMugAPIError(f"Unexpected album response: {result}") from e

        logger.info(f"Created album '{name}' at {handle.uri}")
        return handle

    async def _post_album(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            return await self.client.post(url, json=payload)
        except httpx.RequestError as e:
            logger.warning(
                f"Network error while creating album '{payload['Name']}', will retry: {e}"
            )
            raise ServerError(f"Network error: {e}") from e

    @retry(
        retry=retry_if_exception_type((RateLimitError, ServerError)),
        wait=wait_exponential(multiplier=1, min=1, max=60),
        stop=stop_after_attempt(5),
        reraise=True,
    )
    async def upload_image(
        self, photo: SourcePhoto, album_uri: str, content: bytes
    ) -> UploadResponse:
        """Upload image bytes into an album.

        Args:
            photo: Photo being uploaded, used for title and caption
            album_uri: URI of the destination album
            content: Image bytes

        Returns:
            Upload response; callers check ``succeeded``

        Raises:
            RateLimitError: If rate limit is exceeded
            ServerError: If server error occurs
        """
        file_name = photo.fetchable_url.rsplit("/", 1)[-1] or photo.data_id
        mime_type = (
            photo.media_type
            or mimetypes.guess_type(file_name)[0]
            or "application/octet-stream"
        )
        headers: dict[str, str | bytes] = {
            "Content-Type": mime_type,
            "Content-MD5": hashlib.md5(content).hexdigest(),
            "X-Smug-AlbumUri": album_uri,
            "X-Smug-FileName": file_name.encode("utf-8"),
            "X-Smug-ResponseType": "JSON",
            "X-Smug-Version": "v2",
        }
        if photo.title:
            headers["X-Smug-Title"] = photo.title.encode("utf-8")
        if photo.description:
            headers["X-Smug-Caption"] = photo.description.encode("utf-8")

        try:
            response = await self.client.post(
                self.upload_url, content=content, headers=headers
            )
        except httpx.RequestError as e:
            logger.warning(f"Network error while uploading '{photo.title}', will retry: {e}")
            raise ServerError(f"Network error: {e}") from e

        result = self._parse_json_response(response, f"uploading '{photo.title}'")
        if response.status_code == 429 or response.status_code >= 500:
            self._handle_error_response(response.status_code, result, f"uploading '{photo.title}'")

        image = result.get("Image") or {}
        upload = UploadResponse(
            status_code=response.status_code,
            image_uri=image.get("ImageUri"),
            body=result,
        )
        logger.debug(f"Upload of '{photo.title}' to {album_uri} answered {upload.status_code}")
        return upload

    @retry(
        retry=retry_if_exception_type((RateLimitError, ServerError)),
        wait=wait_exponential(multiplier=1, min=1, max=60),
        stop=stop_after_attempt(5),
        reraise=True,
    )
    async def fetch_image(self, url: str) -> bytes:
        """Download image bytes from a URL the source exposes directly.

        Raises:
            SmugMugAPIError: If the image cannot be fetched
        """
        try:
            response = await self.client.get(url, follow_redirects=True)
        except httpx.RequestError as e:
            logger.warning(f"Network error while fetching {url}, will retry: {e}")
            raise ServerError(f"Network error: {e}") from e

        if response.status_code == 429:
            raise RateLimitError(f"Rate limit exceeded while fetching {url}")
        if response.status_code >= 500:
            raise ServerError(f"Server error {response.status_code} while fetching {url}")
        if response.status_code >= 400:
            raise SmugMugAPIError(f"Could not fetch {url}: HTTP {response.status_code}")
        return response.content

    def _parse_json_response(
        self, response: httpx.Response, context: str
    ) -> dict[str, Any]:
        """Parse JSON response, handling non-JSON responses gracefully.

        Raises:
            ServerError: If response is 5xx with non-JSON body
            SmugMugAPIError: If response has invalid JSON for non-5xx status
        """
        try:
            return response.json()
        except ValueError:
            # Non-JSON response (e.g., HTML error page during outages)
            if response.status_code >= 500:
                logger.warning(f"Server returned non-JSON response while {context}, will retry")
                raise ServerError(
                    f"Server error {response.status_code}: {response.text[:200]}"
                )
            raise SmugMugAPIError(
                f"Invalid API response while {context}: {response.text[:200]}"
            )

    def _handle_error_response(
        self, status_code: int, result: dict[str, Any], context: str
    ) -> None:
        """Handle error responses from the SmugMug API.

        Raises:
            RateLimitError: If rate limit is exceeded
            ServerError: If server error occurs
            SmugMugAPIError: For other API errors
        """
        error_message = result.get("Message") or result.get("message") or str(result)

        if status_code == 429:
            logger.warning(f"Rate limit exceeded while {context}, will retry")
            raise RateLimitError(f"SmugMug API rate limit exceeded: {error_message}")

        if status_code >= 500:
            logger.warning(f"Server error while {context}, will retry")
            raise ServerError(f"SmugMug API server error: {error_message}")

        # Other errors - don't retry
        error_msg = f"SmugMug API error while {context}: {error_message}"
        logger.error(error_msg)
        raise SmugMugAPIError(error_msg)
