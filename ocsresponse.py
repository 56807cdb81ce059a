"""Decoding of Nextcloud OCS and WebDAV responses used when sharing files.

OCS endpoints wrap every answer in ``{"ocs": {"meta": ..., "data": ...}}``.
Depending on share type and server version ``data`` is a single object, a
list of objects or empty, so it is decoded into one of ``SingleShare``,
``ShareList`` or ``EmptyShare``. Anything else is reported as a
``MalformedResponseError`` instead of being defaulted.
"""
from dataclasses import dataclass
from typing import Any, List, Optional, Union
from xml.etree import ElementTree as ET

from pydantic import (
    BaseModel,
    ConfigDict,
    StrictInt,
    StrictStr,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

DAV_NAMESPACES = {"d": "DAV:"}


# --- Errors ---
class TalkShareError(Exception):
    """Base class for everything raised while sharing a file into Talk."""


class TransportError(TalkShareError):
    """The HTTP request could not be sent or no response was received."""


class ShareCreationError(TalkShareError):
    def __init__(self, status_code: int, path: str = ""):
        super().__init__(f"share creation for '{path}' failed with HTTP {status_code}")
        self.status_code = status_code
        self.path = path


class RemoteFileNotFoundError(TalkShareError, FileNotFoundError):
    """WebDAV could not confirm that the file exists on the server."""

    def __init__(self, path: str, status_code: Optional[int] = None):
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"no file info for '{path}' in WebDAV response{detail}")
        self.path = path
        self.status_code = status_code


class MalformedResponseError(TalkShareError):
    """A response body was present but did not have the expected shape."""


class MessagePostError(TalkShareError):
    def __init__(self, status_code: int, conversation_token: str = ""):
        super().__init__(
            f"posting chat message to conversation '{conversation_token}' "
            f"failed with HTTP {status_code}"
        )
        self.status_code = status_code
        self.conversation_token = conversation_token


class UploadError(TalkShareError):
    """Uploading a local file before sharing it failed."""


# --- Share payloads ---
class ShareData(BaseModel):
    """One share record as returned by the files_sharing API."""

    model_config = ConfigDict(extra="allow")

    id: Optional[Union[StrictStr, StrictInt]] = None
    url: Optional[StrictStr] = None
    token: Optional[StrictStr] = None

    @field_validator("id")
    @classmethod
    def _id_as_str(cls, value):
        # older servers send numeric ids
        return None if value is None else str(value)


class _OcsBody(BaseModel):
    data: Any = None


class OcsEnvelope(BaseModel):
    ocs: _OcsBody


@dataclass(frozen=True)
class SingleShare:
    share: ShareData


@dataclass(frozen=True)
class ShareList:
    shares: List[ShareData]


@dataclass(frozen=True)
class EmptyShare:
    pass


SharePayload = Union[SingleShare, ShareList, EmptyShare]

_SHARE_LIST = TypeAdapter(List[ShareData])


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    location = ".".join(str(part) for part in err.get("loc", ())) or "body"
    return f"{location}: {err.get('msg')}"


def decode_share_payload(body: Union[bytes, str]) -> SharePayload:
    """Decode an OCS share response body into a ``SharePayload`` variant."""
    try:
        envelope = OcsEnvelope.model_validate_json(body)
    except ValidationError as e:
        raise MalformedResponseError(f"invalid OCS envelope ({_first_error(e)})") from e

    data = envelope.ocs.data
    if data is None or data == [] or data == {}:
        return EmptyShare()
    try:
        if isinstance(data, list):
            return ShareList(_SHARE_LIST.validate_python(data))
        if isinstance(data, dict):
            return SingleShare(ShareData.model_validate(data))
    except ValidationError as e:
        raise MalformedResponseError(f"invalid share data ({_first_error(e)})") from e
    raise MalformedResponseError(
        f"share data is neither an object nor a list: {type(data).__name__}"
    )


def share_url(payload: SharePayload) -> Optional[str]:
    """Return the public URL of a share, or None when the payload is empty.

    For a list only the first record is considered.
    """
    if isinstance(payload, EmptyShare):
        return None
    if isinstance(payload, ShareList):
        share = payload.shares[0]
    else:
        share = payload.share
    if share.url is None:
        raise MalformedResponseError("no URL in share data")
    return share.url


def share_token(payload: SharePayload) -> str:
    if not isinstance(payload, SingleShare):
        raise MalformedResponseError("share data is not a single object")
    if payload.share.token is None:
        raise MalformedResponseError("no share token in response")
    return payload.share.token


def share_file_id(payload: SharePayload) -> str:
    if not isinstance(payload, SingleShare):
        raise MalformedResponseError("share data is not a single object")
    if payload.share.id is None:
        raise MalformedResponseError("no id in share data")
    return payload.share.id


# --- WebDAV ---
class WebDAVProperties(BaseModel):
    href: Optional[str] = None
    last_modified: Optional[str] = None
    content_length: Optional[int] = None
    resource_type: Optional[str] = None
    etag: Optional[str] = None
    content_type: Optional[str] = None


def _text(prop, name: str) -> Optional[str]:
    elem = prop.find(f"d:{name}", DAV_NAMESPACES)
    if elem is None or elem.text is None:
        return None
    return elem.text.strip()


def parse_multistatus(xml_response: Union[bytes, str]) -> List[WebDAVProperties]:
    """Parse a PROPFIND multi-status body.

    Only ``d:response`` entries that carry a ``d:propstat/d:prop`` are
    returned, so an empty list means the server reported nothing about the
    resource.
    """
    try:
        root = ET.fromstring(xml_response)
    except ET.ParseError as e:
        raise MalformedResponseError(f"failed to parse WebDAV response: {e}") from e

    if root.tag != "{DAV:}multistatus":
        raise MalformedResponseError(f"unexpected WebDAV root element {root.tag}")

    entries = []
    for response in root.findall("d:response", DAV_NAMESPACES):
        prop = response.find("d:propstat/d:prop", DAV_NAMESPACES)
        if prop is None:
            continue
        resourcetype = prop.find("d:resourcetype", DAV_NAMESPACES)
        is_collection = (
            resourcetype is not None
            and resourcetype.find("d:collection", DAV_NAMESPACES) is not None
        )
        try:
            entries.append(
                WebDAVProperties(
                    href=_text(response, "href"),
                    last_modified=_text(prop, "getlastmodified"),
                    content_length=_text(prop, "getcontentlength") or None,
                    resource_type="collection" if is_collection else None,
                    etag=_text(prop, "getetag"),
                    content_type=_text(prop, "getcontenttype"),
                )
            )
        except ValidationError as e:
            raise MalformedResponseError(f"invalid WebDAV properties ({_first_error(e)})") from e
    return entries


# --- Talk chat ---
class ChatMessage(BaseModel):
    """Chat message body for the spreed chat endpoint."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str
    actor_type: str = "users"
    actor_id: str
    object_type: str = "chat"
    object_id: str
    verb: str = "comment"

    @classmethod
    def for_file(cls, file_id: str, actor_id: str, conversation_token: str) -> "ChatMessage":
        return cls(
            message=f"image:{file_id}",
            actor_id=actor_id,
            object_id=conversation_token,
        )

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)
