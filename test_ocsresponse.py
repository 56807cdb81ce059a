import json

import pytest

from ocsresponse import (
    ChatMessage,
    EmptyShare,
    MalformedResponseError,
    RemoteFileNotFoundError,
    ShareList,
    SingleShare,
    decode_share_payload,
    parse_multistatus,
    share_file_id,
    share_token,
    share_url,
)


def _envelope(data):
    return json.dumps({"ocs": {"meta": {"status": "ok", "statuscode": 200}, "data": data}})


def test_list_payload_uses_first_url():
    payload = decode_share_payload(_envelope([{"url": "https://x/s/abc"}, {"url": "https://x/s/def"}]))
    assert isinstance(payload, ShareList)
    assert share_url(payload) == "https://x/s/abc"


def test_single_payload_url():
    payload = decode_share_payload(_envelope({"id": "7", "url": "https://x/s/one", "share_type": 3}))
    assert isinstance(payload, SingleShare)
    assert share_url(payload) == "https://x/s/one"


@pytest.mark.parametrize("data", [[], {}, None])
def test_empty_payloads(data):
    payload = decode_share_payload(_envelope(data))
    assert isinstance(payload, EmptyShare)
    assert share_url(payload) is None


def test_missing_data_is_empty():
    assert isinstance(decode_share_payload(json.dumps({"ocs": {}})), EmptyShare)


def test_list_without_url_is_malformed():
    with pytest.raises(MalformedResponseError):
        share_url(decode_share_payload(_envelope([{"id": "1"}])))


def test_non_string_url_is_malformed():
    with pytest.raises(MalformedResponseError):
        decode_share_payload(_envelope([{"url": 12}]))


def test_list_of_non_objects_is_malformed():
    with pytest.raises(MalformedResponseError):
        decode_share_payload(_envelope(["https://x/s/abc"]))


def test_scalar_data_is_malformed():
    with pytest.raises(MalformedResponseError):
        decode_share_payload(_envelope("nope"))


@pytest.mark.parametrize("body", ["not json", "{}", '{"ocs": []}', '{"ocs": null}'])
def test_invalid_envelope(body):
    with pytest.raises(MalformedResponseError):
        decode_share_payload(body)


def test_single_without_url_is_malformed():
    with pytest.raises(MalformedResponseError):
        share_url(decode_share_payload(_envelope({"id": "3"})))


def test_token_and_file_id():
    payload = decode_share_payload(_envelope({"id": 42, "token": "tok1"}))
    assert share_token(payload) == "tok1"
    assert share_file_id(payload) == "42"


def test_token_requires_single_object():
    with pytest.raises(MalformedResponseError):
        share_token(decode_share_payload(_envelope([{"token": "tok1"}])))


def test_missing_token_and_id():
    payload = decode_share_payload(_envelope({"url": "https://x/s/abc"}))
    with pytest.raises(MalformedResponseError):
        share_token(payload)
    with pytest.raises(MalformedResponseError):
        share_file_id(payload)


def test_bool_id_is_malformed():
    with pytest.raises(MalformedResponseError):
        decode_share_payload(_envelope({"id": True}))


MULTISTATUS = b"""<?xml version="1.0"?>
<d:multistatus xmlns:d="DAV:" xmlns:oc="http://owncloud.org/ns">
  <d:response>
    <d:href>/remote.php/dav/files/alice/Photos/cat.png</d:href>
    <d:propstat>
      <d:prop>
        <d:getlastmodified>Sat, 17 Oct 2026 10:00:00 GMT</d:getlastmodified>
        <d:getcontentlength>2048</d:getcontentlength>
        <d:resourcetype/>
        <d:getetag>"abc123"</d:getetag>
        <d:getcontenttype>image/png</d:getcontenttype>
      </d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
  </d:response>
</d:multistatus>
"""


def test_parse_multistatus():
    (entry,) = parse_multistatus(MULTISTATUS)
    assert entry.href == "/remote.php/dav/files/alice/Photos/cat.png"
    assert entry.content_length == 2048
    assert entry.content_type == "image/png"
    assert entry.etag == '"abc123"'
    assert entry.resource_type is None


def test_parse_multistatus_collection():
    body = (
        b'<d:multistatus xmlns:d="DAV:"><d:response><d:href>/f/</d:href>'
        b"<d:propstat><d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop>"
        b"</d:propstat></d:response></d:multistatus>"
    )
    (entry,) = parse_multistatus(body)
    assert entry.resource_type == "collection"
    assert entry.content_length is None


def test_parse_multistatus_empty_and_without_propstat():
    assert parse_multistatus(b'<d:multistatus xmlns:d="DAV:"/>') == []
    body = b'<d:multistatus xmlns:d="DAV:"><d:response><d:href>/x</d:href></d:response></d:multistatus>'
    assert parse_multistatus(body) == []


@pytest.mark.parametrize("body", [b"<not xml", b'<d:error xmlns:d="DAV:"/>'])
def test_parse_multistatus_malformed(body):
    with pytest.raises(MalformedResponseError):
        parse_multistatus(body)


def test_chat_message_payload():
    message = ChatMessage.for_file("42", "alice", "room1")
    assert message.to_payload() == {
        "message": "image:42",
        "actorType": "users",
        "actorId": "alice",
        "objectType": "chat",
        "objectId": "room1",
        "verb": "comment",
    }


def test_remote_file_not_found_is_builtin_file_not_found():
    err = RemoteFileNotFoundError("/a.txt", 404)
    assert isinstance(err, FileNotFoundError)
    assert err.status_code == 404
    assert "/a.txt" in str(err)
