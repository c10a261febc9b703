# SPDX-License-Identifier: MIT
"""Tests for the directory groups API client."""

from datetime import datetime, timezone

import httpx
import pytest

from groupdedup.connectors.directory import DirectoryClient
from groupdedup.utils.http import TerminalClientError

ORG_URL = "https://example.okta.com"
NOW_EPOCH = 1_700_000_000.0
GROUPS_URL = f"{ORG_URL}/api/v1/groups"


class TestPagination:
    """Link-header cursor pagination."""

    def test_follows_next_links(self, make_client, group_payload):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if "after" not in request.url.params:
                return httpx.Response(
                    200,
                    json=[group_payload("g1", "Finance"), group_payload("g2", "HR")],
                    headers={"Link": f'<{GROUPS_URL}?limit=2>; rel="self", <{GROUPS_URL}?after=g2&limit=2>; rel="next"'},
                )
            return httpx.Response(200, json=[group_payload("g3", "Ops")], headers={"Link": f'<{GROUPS_URL}>; rel="self"'})

        client = make_client(handler, page_size=2)
        groups = list(client.fetch_all())

        assert [g.id for g in groups] == ["g1", "g2", "g3"]
        assert len(requests) == 2
        assert requests[0].url.params["limit"] == "2"
        assert requests[0].url.params["expand"] == "stats"
        assert requests[1].url.params["after"] == "g2"

    def test_stops_on_empty_page(self, make_client, group_payload):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(200, json=[group_payload("g1", "A")],
                                      headers={"Link": f'<{GROUPS_URL}?after=g1>; rel="next"'})
            return httpx.Response(200, json=[], headers={"Link": f'<{GROUPS_URL}?after=zzz>; rel="next"'})

        client = make_client(handler)
        assert [g.id for g in client.fetch_all()] == ["g1"]
        assert len(calls) == 2

    def test_group_records_are_parsed(self, make_client, group_payload):
        client = make_client(lambda r: httpx.Response(200, json=[group_payload("g1", "Finance", users=12)]))
        group = next(client.fetch_all())

        assert group.display_name == "Finance"
        assert group.group_type == "OKTA_GROUP"
        assert group.member_count == 12
        assert group.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_bad_timestamp_defaults_to_none(self, make_client, group_payload):
        payload = group_payload("g1", "Finance", created="not a date")
        client = make_client(lambda r: httpx.Response(200, json=[payload]))
        assert next(client.fetch_all()).created_at is None

    def test_directory_groups_filter(self, make_client):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[])

        client = make_client(handler)
        list(client.fetch_groups())
        list(client.fetch_groups(include_app_groups=True))

        assert seen[0].url.params["filter"] == 'type eq "OKTA_GROUP"'
        assert "filter" not in seen[1].url.params

    def test_sends_token(self, make_client):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[])

        list(make_client(handler).fetch_all())
        assert seen[0].headers["Authorization"] == "SSWS test-token"

    def test_fresh_call_restarts(self, make_client, group_payload):
        calls = []

        def handler(request):
            calls.append(str(request.url))
            return httpx.Response(200, json=[group_payload("g1", "A")])

        client = make_client(handler)
        list(client.fetch_all())
        list(client.fetch_all())
        assert calls[0] == calls[1]


class TestThrottle:
    """Pre-emptive sleep on the remaining-calls header."""

    def test_low_remaining_sleeps_before_next_page(self, make_client, group_payload, sleeps):
        def handler(request):
            if "after" not in request.url.params:
                return httpx.Response(200, json=[group_payload("g1", "A")], headers={
                    "X-Rate-Limit-Remaining": "3",
                    "X-Rate-Limit-Reset": str(int(NOW_EPOCH) + 10),
                    "Link": f'<{GROUPS_URL}?after=g1>; rel="next"',
                })
            assert sleeps == [11]
            return httpx.Response(200, json=[group_payload("g2", "B")], headers={"X-Rate-Limit-Remaining": "500"})

        client = make_client(handler, rate_limit_threshold=5)
        assert [g.id for g in client.fetch_all()] == ["g1", "g2"]
        assert sleeps == [11]

    def test_plenty_remaining_never_sleeps(self, make_client, sleeps):
        client = make_client(lambda r: httpx.Response(200, json=[], headers={"X-Rate-Limit-Remaining": "99"}))
        list(client.fetch_all())
        assert sleeps == []


class TestRetries:
    """Retry and terminal failure behaviour."""

    def test_429_waits_for_reset_then_succeeds(self, make_client, sleeps):
        responses = iter([
            httpx.Response(429, headers={"X-Rate-Limit-Reset": str(int(NOW_EPOCH) + 5)}),
            httpx.Response(204),
        ])
        client = make_client(lambda r: next(responses))

        assert client.delete("g1") == 204
        assert len(sleeps) == 1
        assert sleeps[0] >= 5

    def test_429_without_headers_uses_backoff(self, make_client, sleeps):
        responses = iter([httpx.Response(429), httpx.Response(429), httpx.Response(204)])
        client = make_client(lambda r: next(responses))

        client.delete("g1")
        assert sleeps == [1, 2]

    def test_5xx_backoff_doubles_and_caps(self, make_client, sleeps):
        client = make_client(lambda r: httpx.Response(503), max_attempts=7, backoff_max=8)

        with pytest.raises(TerminalClientError) as exc_info:
            client.delete("g1")

        assert sleeps == [1, 2, 4, 8, 8, 8]
        assert exc_info.value.attempts == 7
        assert exc_info.value.status_code == 503

    def test_transport_error_is_retried(self, make_client, sleeps):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(204)

        assert make_client(handler).delete("g1") == 204
        assert sleeps == [1]

    def test_timeout_exhaustion_is_terminal(self, make_client, sleeps):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler, max_attempts=3)
        with pytest.raises(TerminalClientError) as exc_info:
            client.delete("g1")

        assert exc_info.value.status_code is None
        assert len(sleeps) == 2

    def test_429_exhaustion_is_terminal(self, make_client):
        client = make_client(lambda r: httpx.Response(429, headers={"Retry-After": "1"}), max_attempts=3)
        with pytest.raises(TerminalClientError) as exc_info:
            client.delete("g1")
        assert exc_info.value.status_code == 429

    def test_4xx_fails_immediately(self, make_client, sleeps):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"errorCode": "E0000007", "errorSummary": "Not found: Resource not found: g1 (UserGroup)"})

        with pytest.raises(TerminalClientError, match="Not found"):
            make_client(handler).delete("g1")

        assert len(calls) == 1
        assert sleeps == []

    def test_events_reach_the_log(self, make_client, log_messages):
        responses = iter([httpx.Response(500), httpx.Response(204)])
        make_client(lambda r: next(responses)).delete("g1")

        assert any("attempt 1/5" in m for m in log_messages)
        assert any("sleeping 1.0s" in m for m in log_messages)
        assert any("Deleted group g1" in m for m in log_messages)

    def test_fetch_error_mid_stream_propagates(self, make_client, group_payload):
        def handler(request):
            if "after" not in request.url.params:
                return httpx.Response(200, json=[group_payload("g1", "A")],
                                      headers={"Link": f'<{GROUPS_URL}?after=g1>; rel="next"'})
            return httpx.Response(403, json={"errorSummary": "You do not have permission"})

        client = make_client(handler)
        with pytest.raises(TerminalClientError):
            list(client.fetch_all())

    def test_non_json_page_is_terminal(self, make_client):
        client = make_client(lambda r: httpx.Response(200, text="<html>maintenance</html>"))
        with pytest.raises(TerminalClientError, match="Invalid JSON"):
            list(client.fetch_all())

    def test_redirect_loop_is_terminal(self, sleeps):
        def handler(request):
            return httpx.Response(301, headers={"Location": str(request.url)})

        http_client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)
        client = DirectoryClient(
            org_url=ORG_URL,
            api_token="t",
            http_client=http_client,
            sleep=sleeps.append,
            clock=lambda: NOW_EPOCH,
        )

        with pytest.raises(TerminalClientError, match="TooManyRedirects") as exc_info:
            client.delete("g1")

        assert isinstance(exc_info.value.__cause__, httpx.TooManyRedirects)
        assert sleeps == []
        http_client.close()


class TestClientSetup:
    """Constructor validation and URL handling."""

    def test_requires_token(self):
        with pytest.raises(ValueError):
            DirectoryClient(org_url=ORG_URL, api_token="")

    def test_requires_org_url(self):
        with pytest.raises(ValueError):
            DirectoryClient(org_url="", api_token="t")

    def test_build_url(self):
        client = DirectoryClient(org_url=f"{ORG_URL}/", api_token="t")
        assert client.build_url("/api/v1/groups") == GROUPS_URL
        assert client.build_url(f"{GROUPS_URL}?after=x") == f"{GROUPS_URL}?after=x"
        client.close()

    def test_delete_quotes_id(self, make_client):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        make_client(handler).delete("00g 1")
        assert seen[0].method == "DELETE"
        assert seen[0].url.raw_path.decode().endswith("/api/v1/groups/00g%201")
