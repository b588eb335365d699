"""Unit tests for HttpCaller request construction and dispatch.

Covers signing, request id and User-Agent injection, the form / JSON /
raw body variants and the mapping of transport failures.
"""

import asyncio
import io
import threading

import httpx
import pytest

from qiniu_client.config.settings import Settings
from qiniu_client.context import CallContext, use_context
from qiniu_client.exceptions import ConstructionError, ErrorInfo, TransportError
from qiniu_client.http import HttpCaller, append_query, encode_form
from qiniu_client.http.caller import _discard_exchange
from qiniu_client.utils.user_agent import set_app_name


@pytest.fixture
def caller(echo_transport):
    return HttpCaller(transport=echo_transport)


def test_encode_form_sorts_keys_and_expands_lists():
    assert encode_form({"b": ["2", "3"], "a": ["1"]}) == "a=1&b=2&b=3"
    assert encode_form({"k": "v w"}) == "k=v+w"
    assert encode_form(None) == ""


def test_append_query():
    assert append_query("http://x/y", "a=1") == "http://x/y?a=1"
    assert append_query("http://x/y?z=2", "a=1") == "http://x/y?z=2&a=1"


@pytest.mark.asyncio
class TestBuildRequest:
    """Request construction and signing."""

    async def test_signs_with_context_credentials(self, caller, credentials):
        ctx = CallContext(credentials=credentials)
        request = await caller.build_request(ctx, "GET", "http://rs.qiniu.com/stat/abc")

        assert request.headers["Authorization"] == "QBox ak:signature"
        assert credentials.signed == [request]

    async def test_no_authorization_without_credentials(self, caller):
        request = await caller.build_request(CallContext(), "GET", "http://x/y")
        assert "Authorization" not in request.headers

    async def test_async_signer(self, caller):
        class AsyncCredentials:
            async def sign_request(self, request):
                return "async-token"

        ctx = CallContext(credentials=AsyncCredentials())
        request = await caller.build_request(ctx, "POST", "http://x/y")
        assert request.headers["Authorization"] == "QBox async-token"

    async def test_signing_failure_is_construction_error(self, caller):
        class BrokenCredentials:
            def sign_request(self, request):
                raise RuntimeError("no key")

        ctx = CallContext(credentials=BrokenCredentials())
        with pytest.raises(ConstructionError) as exc_info:
            await caller.build_request(ctx, "GET", "http://x/y")
        assert "no key" in str(exc_info.value)

    async def test_relative_url_is_construction_error(self, caller):
        with pytest.raises(ConstructionError):
            await caller.build_request(None, "GET", "not-a-url/path")

    async def test_unsupported_body_is_construction_error(self, caller):
        with pytest.raises(ConstructionError):
            await caller.build_request(None, "POST", "http://x/y", body={"a": 1})

    async def test_caller_headers_are_copied(self, caller):
        headers = {"X-Multi": ["a", "b"]}
        request = await caller.build_request(None, "GET", "http://x/y", headers)

        assert request.headers.get_list("X-Multi") == ["a", "b"]
        request.headers["X-Other"] = "1"
        assert headers == {"X-Multi": ["a", "b"]}


@pytest.mark.asyncio
class TestDispatchHeaders:
    """Headers added at dispatch time."""

    async def test_reqid_and_default_user_agent(self, caller, recorded_requests):
        await caller.call(CallContext(reqid="req-123"), "GET", "http://x/y")

        sent = recorded_requests[0]
        assert sent.headers["X-Reqid"] == "req-123"
        assert sent.headers["User-Agent"].startswith("QiniuPython/")

    async def test_user_agent_includes_app_name(self, caller, recorded_requests):
        set_app_name("demo-app")
        await caller.call(None, "GET", "http://x/y")
        assert "; demo-app) " in recorded_requests[0].headers["User-Agent"]

    async def test_explicit_user_agent_is_kept(self, caller, recorded_requests):
        await caller.call(None, "GET", "http://x/y", {"User-Agent": "custom/1.0"})
        assert recorded_requests[0].headers["User-Agent"] == "custom/1.0"

    async def test_no_reqid_header_without_reqid(self, caller, recorded_requests):
        await caller.call(CallContext(), "GET", "http://x/y")
        assert "X-Reqid" not in recorded_requests[0].headers

    async def test_ambient_context_is_used(self, caller, recorded_requests, credentials):
        with use_context(CallContext(credentials=credentials, reqid="ambient")):
            await caller.call(None, "GET", "http://x/y")

        sent = recorded_requests[0]
        assert sent.headers["X-Reqid"] == "ambient"
        assert sent.headers["Authorization"] == "QBox ak:signature"


@pytest.mark.asyncio
class TestCallVariants:
    """Form, JSON and raw body calls."""

    async def test_get_form_goes_to_query(self, caller, recorded_requests):
        await caller.call_with_form(None, "GET", "http://x/y", data={"a": ["1"]})

        sent = recorded_requests[0]
        assert str(sent.url) == "http://x/y?a=1"
        assert sent.content == b""

    async def test_get_form_appends_to_existing_query(self, caller, recorded_requests):
        await caller.call_with_form(None, "GET", "http://x/y?z=2", data={"a": ["1"]})
        assert str(recorded_requests[0].url) == "http://x/y?z=2&a=1"

    @pytest.mark.parametrize("method", ["HEAD", "DELETE"])
    async def test_bodyless_methods_use_query(self, caller, recorded_requests, method):
        await caller.call_with_form(None, method, "http://x/y", data={"a": ["1"]})
        assert recorded_requests[0].url.query == b"a=1"

    async def test_post_form_is_body(self, caller, recorded_requests):
        await caller.call_with_form(None, "POST", "http://x/y", data={"a": ["1"]})

        sent = recorded_requests[0]
        assert str(sent.url) == "http://x/y"
        assert sent.content == b"a=1"
        assert sent.headers["Content-Type"] == "application/x-www-form-urlencoded"

    async def test_form_does_not_mutate_caller_headers(self, caller):
        headers = {"X-Foo": "bar"}
        await caller.call_with_form(None, "POST", "http://x/y", headers, {"a": ["1"]})
        assert headers == {"X-Foo": "bar"}

    async def test_json_body(self, caller, recorded_requests):
        await caller.call_with_json(None, "POST", "http://x/y", data={"a": 1, "b": [1, 2]})

        sent = recorded_requests[0]
        assert sent.content == b'{"a":1,"b":[1,2]}'
        assert sent.headers["Content-Type"] == "application/json"

    async def test_unserializable_json_is_construction_error(self, caller, recorded_requests):
        with pytest.raises(ConstructionError):
            await caller.call_with_json(None, "POST", "http://x/y", data={"a": object()})
        assert recorded_requests == []

    async def test_raw_bytes_body(self, caller, recorded_requests):
        await caller.call_with(None, "PUT", "http://x/y", None, b"hello", 5)

        sent = recorded_requests[0]
        assert sent.content == b"hello"
        assert sent.headers["Content-Length"] == "5"

    async def test_file_body_with_known_length(self, caller, recorded_requests):
        await caller.call_with64(None, "PUT", "http://x/y", {}, io.BytesIO(b"abcdef"), 6)

        sent = recorded_requests[0]
        assert sent.content == b"abcdef"
        assert sent.headers["Content-Length"] == "6"
        assert "Transfer-Encoding" not in sent.headers

    async def test_stream_body_with_unknown_length_is_chunked(self, caller, recorded_requests):
        async def chunks():
            yield b"ab"
            yield b"cd"

        await caller.call_with(None, "POST", "http://x/y", None, chunks(), 0)

        sent = recorded_requests[0]
        assert sent.content == b"abcd"
        assert sent.headers["Transfer-Encoding"] == "chunked"

    async def test_result_type_decodes_response(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"hash": "Fh8x", "key": "a.txt"})
        )
        async with HttpCaller(transport=transport) as caller:
            ret = await caller.call_with_form(
                None, "POST", "http://up/", data={"key": ["a.txt"]}, result_type=dict
            )
        assert ret == {"hash": "Fh8x", "key": "a.txt"}

    async def test_remote_error_is_raised(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(
                401,
                json={"error": "bad token", "key": "k1", "errno": 612},
                headers={"X-Reqid": "abc"},
            )
        )
        caller = HttpCaller(transport=transport)
        with pytest.raises(ErrorInfo) as exc_info:
            await caller.call(None, "GET", "http://x/y", result_type=dict)

        err = exc_info.value
        assert err.code == 401
        assert err.err == "bad token"
        assert err.reqid == "abc"


@pytest.mark.asyncio
async def test_transport_failure_is_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    caller = HttpCaller(transport=httpx.MockTransport(handler))
    with pytest.raises(TransportError) as exc_info:
        await caller.call(None, "GET", "http://x/y")
    assert isinstance(exc_info.value.original_error, httpx.ConnectError)


@pytest.mark.asyncio
async def test_do_returns_streaming_response(echo_transport):
    caller = HttpCaller(transport=echo_transport)
    request = await caller.build_request(None, "GET", "http://x/y")
    response = await caller.do(None, request)
    try:
        assert response.status_code == 200
    finally:
        await response.aclose()
    await caller.aclose()


@pytest.mark.asyncio
async def test_app_name_setting_reaches_user_agent(monkeypatch, echo_transport, recorded_requests):
    monkeypatch.setenv("QINIU_APP_NAME", "uploader")
    caller = HttpCaller(transport=echo_transport, settings=Settings())

    await caller.call(None, "GET", "http://x/y")
    assert "; uploader) " in recorded_requests[0].headers["User-Agent"]


@pytest.mark.asyncio
async def test_empty_app_name_setting_keeps_current_user_agent(echo_transport, recorded_requests):
    set_app_name("embedder")
    caller = HttpCaller(transport=echo_transport, settings=Settings())

    await caller.call(None, "GET", "http://x/y")
    assert "; embedder) " in recorded_requests[0].headers["User-Agent"]


@pytest.mark.asyncio
async def test_discarded_exchange_closes_finished_response():
    async def chunks():
        yield b"{}"

    response = httpx.Response(200, content=chunks())
    finished = asyncio.get_running_loop().create_future()
    finished.set_result(response)

    await _discard_exchange(finished)
    assert response.is_closed


@pytest.mark.asyncio
async def test_discarded_exchange_tolerates_failure_and_cancellation():
    loop = asyncio.get_running_loop()
    failed = loop.create_future()
    failed.set_exception(TransportError("boom"))
    cancelled = loop.create_future()
    cancelled.cancel()

    await _discard_exchange(failed)
    await _discard_exchange(cancelled)


@pytest.mark.asyncio
async def test_file_body_is_read_off_the_event_loop(echo_transport, recorded_requests):
    loop_thread = threading.get_ident()

    class RecordingFile(io.BytesIO):
        def __init__(self, data):
            super().__init__(data)
            self.threads = set()

        def read(self, size=-1):
            self.threads.add(threading.get_ident())
            return super().read(size)

    body = RecordingFile(b"payload")
    caller = HttpCaller(transport=echo_transport)
    await caller.call_with(None, "PUT", "http://x/y", None, body, 7)

    assert recorded_requests[0].content == b"payload"
    assert loop_thread not in body.threads
