import logging
import os
import sys
import time
from argparse import ArgumentParser
from enum import Enum
from typing import NamedTuple, Optional
from urllib.parse import quote, urlparse

import nextcloud_client
import requests

from ocsresponse import (
    ChatMessage,
    MessagePostError,
    RemoteFileNotFoundError,
    ShareCreationError,
    TalkShareError,
    TransportError,
    UploadError,
    WebDAVProperties,
    decode_share_payload,
    parse_multistatus,
    share_file_id,
    share_token,
    share_url,
)

try:
    import settings  # type: ignore
except ImportError:
    from types import SimpleNamespace

    settings = SimpleNamespace()

logger = logging.getLogger(__name__)


def _get_setting(name, default):
    """Read an optional attribute from settings with a default.
    Falls back to environment variables in ALL_CAPS as strings if present.
    """
    env_name = name.upper()
    if hasattr(settings, name):
        return getattr(settings, name)
    if env_name in os.environ:
        val = os.environ[env_name]
        # Try to cast numerics where appropriate
        try:
            if isinstance(default, int):
                return int(val)
            if isinstance(default, float):
                return float(val)
        except ValueError:
            logger.warning("Ignoring non-numeric %s=%r", env_name, val)
            return default
        return val
    return default


REQUEST_TIMEOUT_SECONDS = _get_setting("request_timeout_seconds", 60)
MAX_UPLOAD_SIZE_MB = _get_setting("max_upload_size_mb", 200)
MAX_UPLOAD_ATTEMPTS = _get_setting("max_upload_attempts", 3)
UPLOAD_BACKOFF_SECONDS = _get_setting("upload_backoff_seconds", 2)

SHARES_ENDPOINT = "/ocs/v2.php/apps/files_sharing/api/v1/shares"
CHAT_ENDPOINT = "/ocs/v2.php/apps/spreed/api/v1/chat/"
DAV_FILES_ENDPOINT = "/remote.php/dav/files/"

SHARE_TYPE_PUBLIC_LINK = "3"
SHARE_TYPE_ROOM = "10"
PERMISSION_READ = "1"

OCS_HEADERS = {"OCS-APIRequest": "true", "Accept": "application/json"}

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<d:propfind xmlns:d="DAV:">\n'
    "  <d:prop>\n"
    "    <d:getlastmodified/>\n"
    "    <d:getcontentlength/>\n"
    "    <d:resourcetype/>\n"
    "    <d:getetag/>\n"
    "    <d:getcontenttype/>\n"
    "  </d:prop>\n"
    "</d:propfind>\n"
)


class ShareTarget(Enum):
    PUBLIC_LINK = "public_link"
    CONVERSATION = "conversation"


class ShareRequest(NamedTuple):
    path: str
    target: ShareTarget = ShareTarget.PUBLIC_LINK
    conversation_token: Optional[str] = None


def _normalize_path(path: str) -> str:
    return path if path.startswith("/") else "/" + path


def make_session(user: str, password: str, verify: bool = True) -> requests.Session:
    """Build a requests session authenticated with a user and app password."""
    session = requests.Session()
    session.auth = (user, password)
    session.verify = verify
    session.headers.update({"X-Requested-With": "XMLHttpRequest"})
    return session


class FileShareOperation:
    """Share files of one Nextcloud user as public links or into Talk conversations.

    The session is owned by the caller and must already carry the user's
    credentials.
    """

    def __init__(self, base_url, user, session, timeout=None):
        self.base_url = base_url.rstrip("/")
        self.user = user
        self.session = session
        self.timeout = REQUEST_TIMEOUT_SECONDS if timeout is None else timeout

    @property
    def shares_url(self) -> str:
        return self.base_url + SHARES_ENDPOINT

    def dav_url(self, path: str) -> str:
        return self.base_url + DAV_FILES_ENDPOINT + quote(self.user) + quote(_normalize_path(path))

    def chat_url(self, conversation_token: str) -> str:
        return self.base_url + CHAT_ENDPOINT + quote(conversation_token)

    def _send(self, method, url, **kwargs) -> requests.Response:
        logger.debug("%s %s", method, url)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error("%s %s failed: %s", method, url, e)
            raise TransportError(f"{method} {url} failed: {type(e).__name__}: {e}") from e
        logger.debug("%s %s -> HTTP %s", method, url, response.status_code)
        return response

    def _create_share(self, params: dict):
        response = self._send("POST", self.shares_url, headers=OCS_HEADERS, data=params)
        if response.status_code != 200:
            logger.warning(
                "Share creation for %s failed: HTTP %s", params.get("path"), response.status_code
            )
            raise ShareCreationError(response.status_code, params.get("path", ""))
        return decode_share_payload(response.content)

    def stat(self, path: str) -> WebDAVProperties:
        """PROPFIND a single file and return its properties.

        Raises RemoteFileNotFoundError on 404 or when the server does not
        report the file, TransportError on any other failing status.
        """
        path = _normalize_path(path)
        response = self._send(
            "PROPFIND",
            self.dav_url(path),
            headers={"Depth": "0", "Content-Type": "application/xml; charset=utf-8"},
            data=PROPFIND_BODY,
        )
        if response.status_code == 404:
            logger.warning("PROPFIND %s returned HTTP 404", path)
            raise RemoteFileNotFoundError(path, 404)
        if response.status_code not in (200, 207):
            logger.error("PROPFIND %s returned HTTP %s", path, response.status_code)
            raise TransportError(f"PROPFIND {path} returned HTTP {response.status_code}")
        entries = parse_multistatus(response.content)
        if not entries:
            logger.warning("PROPFIND %s returned no response entries", path)
            raise RemoteFileNotFoundError(path)
        return entries[0]

    def share_as_public_link(self, path: str) -> str:
        """Create a read-only public link share and return its URL."""
        path = _normalize_path(path)
        params = {
            "shareType": SHARE_TYPE_PUBLIC_LINK,
            "path": path,
            "permissions": PERMISSION_READ,
            "expireDate": "",
            "publicUpload": "false",
        }
        url = share_url(self._create_share(params))
        if url is not None:
            return url

        logger.info("Share response for %s had no data, resolving the link via WebDAV", path)
        props = self.stat(path)
        logger.debug("WebDAV properties for %s: %s", path, props)
        token = share_token(self._create_share(params))
        base = urlparse(self.base_url)
        return f"{base.scheme}://{base.netloc}/index.php/s/{token}"

    def share_to_conversation(self, path: str, conversation_token: str) -> str:
        """Share a file into a Talk conversation and announce it in the chat.

        Returns the id reported by the share API.
        """
        if not conversation_token:
            raise ValueError("conversation_token is required to share into a conversation")
        path = _normalize_path(path)
        params = {
            "shareType": SHARE_TYPE_ROOM,
            "path": path,
            "shareWith": conversation_token,
        }
        file_id = share_file_id(self._create_share(params))
        self.post_chat_message(
            conversation_token, ChatMessage.for_file(file_id, self.user, conversation_token)
        )
        return file_id

    def post_chat_message(self, conversation_token: str, message: ChatMessage) -> None:
        response = self._send(
            "POST",
            self.chat_url(conversation_token),
            headers=OCS_HEADERS,
            json=message.to_payload(),
        )
        if response.status_code not in (200, 201):
            logger.warning(
                "Chat message to %s failed: HTTP %s", conversation_token, response.status_code
            )
            raise MessagePostError(response.status_code, conversation_token)

    def share(self, request: ShareRequest) -> str:
        if request.target is ShareTarget.CONVERSATION:
            return self.share_to_conversation(request.path, request.conversation_token)
        return self.share_as_public_link(request.path)


# --- Upload helpers: retry/backoff and size checks ---
def _too_large(path, max_size_mb):
    size_mb = os.path.getsize(path) / (1024 * 1024)
    return size_mb > max_size_mb, size_mb


def _is_http_409(exc: Exception) -> bool:
    """Best-effort detection of HTTP 409 Conflict from nextcloud_client.

    A WebDAV PUT answers 409 when the parent collection does not exist.

    The status code is an attribute on some exception types and only part of
    the message on others.
    """
    for attr in ("status_code", "code"):
        if getattr(exc, attr, None) == 409:
            return True
    msg = str(exc)
    return " 409" in msg or "HTTP 409" in msg or "409 Client Error" in msg


def connect(base_url: str, user: str, password: str):
    """Log in with nextcloud_client for WebDAV uploads."""
    nc = nextcloud_client.Client(base_url)
    try:
        nc.login(user, password)
    except Exception as e:
        raise UploadError(f"login to {base_url} as {user} failed: {type(e).__name__}: {e}") from e
    return nc


def upload_file(nc, local_path, remote_path, max_attempts=None, backoff_seconds=None, max_size_mb=None):
    """Upload local_path to remote_path with retries. Returns the number of attempts used."""
    max_attempts = MAX_UPLOAD_ATTEMPTS if max_attempts is None else max_attempts
    backoff_seconds = UPLOAD_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
    max_size_mb = MAX_UPLOAD_SIZE_MB if max_size_mb is None else max_size_mb
    remote_path = _normalize_path(remote_path)

    too_big, size_mb = _too_large(local_path, max_size_mb)
    if too_big:
        raise UploadError(f"{local_path} is too large ({size_mb:.1f} MB > {max_size_mb} MB)")

    attempts = 0
    last_error = None
    while attempts < max_attempts:
        attempts += 1
        try:
            if nc.put_file(remote_path, local_path):
                logger.info("Uploaded %s to %s (attempts=%d)", local_path, remote_path, attempts)
                return attempts
        except Exception as e:
            if _is_http_409(e):
                logger.error("Upload of %s rejected: parent folder of %s is missing", local_path, remote_path)
                raise UploadError(
                    f"upload of {local_path} failed: parent folder of {remote_path} does not exist"
                ) from e
            last_error = f"{type(e).__name__}: {e}"
            logger.warning("Upload attempt %d of %s failed: %s", attempts, local_path, last_error)
        if attempts < max_attempts:
            time.sleep(backoff_seconds)
    detail = f" ({last_error})" if last_error else ""
    raise UploadError(f"upload of {local_path} failed after {attempts} attempts{detail}")


def main(argv=None) -> int:
    parser = ArgumentParser(description="Share a Nextcloud file as a public link or into a Talk conversation")
    parser.add_argument("path", help="Path of the file in the user's Nextcloud storage, e.g. /Photos/cat.png")
    parser.add_argument(
        "--conversation",
        metavar="TOKEN",
        help="Talk conversation token; share into this conversation instead of creating a public link",
    )
    parser.add_argument("--upload", metavar="LOCAL", help="Upload this local file to PATH before sharing")
    parser.add_argument(
        "--url",
        default=_get_setting("nextcloud_url", None),
        help="Nextcloud base URL (or set NEXTCLOUD_URL)",
    )
    parser.add_argument(
        "--user",
        default=_get_setting("nextcloud_user", None),
        help="Nextcloud user (or set NEXTCLOUD_USER)",
    )
    parser.add_argument(
        "--password",
        default=_get_setting("nextcloud_password", None),
        help="App password (or set NEXTCLOUD_PASSWORD)",
    )
    parser.add_argument("--timeout", type=float, default=REQUEST_TIMEOUT_SECONDS, help="Request timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log requests and fallbacks")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    missing = [name for name in ("url", "user", "password") if not getattr(args, name)]
    if missing:
        print(f"Missing {', '.join('--' + m for m in missing)}.", file=sys.stderr)
        return 2

    if args.upload and not os.path.isfile(args.upload):
        print(f"File not found: {args.upload}", file=sys.stderr)
        return 2

    if args.conversation:
        request = ShareRequest(args.path, ShareTarget.CONVERSATION, args.conversation)
    else:
        request = ShareRequest(args.path)

    try:
        if args.upload:
            nc = connect(args.url, args.user, args.password)
            upload_file(nc, args.upload, args.path)
        with make_session(args.user, args.password) as session:
            operation = FileShareOperation(args.url, args.user, session, timeout=args.timeout)
            result = operation.share(request)
    except TalkShareError as e:
        print(f"Share failed: {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    print(result)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
