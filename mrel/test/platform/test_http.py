from __future__ import annotations

from mrel.core.result import Err, Ok
from mrel.platform.http import BasicAuth, HttpResponse, MockHttpClient, NetworkError


class TestHttpResponse:
    def test_ok_range(self) -> None:
        assert HttpResponse(status=201, text="").ok
        assert not HttpResponse(status=404, text="").ok

    def test_message_prefers_host_message(self) -> None:
        assert HttpResponse(status=422, text='{"message": "Validation Failed"}').message() == (
            "Validation Failed"
        )
        assert HttpResponse(status=500, text="oops").message() == "oops"
        assert HttpResponse(status=502, text="").message() == "HTTP 502"

    def test_json_of_non_json_is_none(self) -> None:
        assert HttpResponse(status=200, text="<html>").json() is None


def test_basic_auth_header() -> None:
    assert BasicAuth(user="u", password="p").header() == "Basic dTpw"


class TestMockHttpClient:
    def test_unregistered_request_is_404(self) -> None:
        client = MockHttpClient()

        result = client.request("GET", "https://example.com/x")

        assert isinstance(result, Ok)
        assert result.value.status == 404

    def test_queued_responses_last_repeats(self) -> None:
        client = MockHttpClient()
        url = "https://example.com/x"
        client.set_response("GET", url, NetworkError(url=url, status=0, message="reset"))
        client.set_json("GET", url, 200, {"ok": True})

        first = client.request("GET", url)
        second = client.request("GET", url)
        third = client.request("GET", url)

        assert isinstance(first, Err)
        assert isinstance(second, Ok) and isinstance(third, Ok)
        assert third.value.json() == {"ok": True}
        assert client.urls("GET") == [url, url, url]
