"""Tests for the monitoring API client."""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from kennel.api import MAX_ERROR_BODY_LENGTH, ApiError, MonitoringApi

MARKER = "-- Managed by kennel web:cpu, do not modify manually"

Handler = Callable[[httpx.Request], httpx.Response]


def make_api(handler: Handler, requests: list[httpx.Request] | None = None) -> MonitoringApi:
    def record(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return handler(request)

    client = httpx.Client(
        base_url="https://app.datadoghq.com",
        transport=httpx.MockTransport(record),
    )
    return MonitoringApi("api-key", "app-key", client=client)


class TestList:
    """Tests for listing resources."""

    def test_bare_list(self) -> None:
        api = make_api(
            lambda request: httpx.Response(
                200, json=[{"id": 1, "message": MARKER}, {"id": 2, "message": "manual"}]
            )
        )

        actuals = api.list("monitor")

        assert [a.id for a in actuals] == [1, 2]
        assert [a.tracking_id for a in actuals] == ["web:cpu", None]

    def test_enveloped_list(self) -> None:
        api = make_api(
            lambda request: httpx.Response(200, json={"dashboards": [{"id": "abc", "description": ""}]})
        )

        assert [a.id for a in api.list("dashboard")] == ["abc"]

    def test_sends_auth_headers(self) -> None:
        requests: list[httpx.Request] = []
        api = make_api(lambda request: httpx.Response(200, json={"data": []}), requests)

        api.list("slo")

        request = requests[0]
        assert request.url.path == "/api/v1/slo"
        assert request.headers["DD-API-KEY"] == "api-key"
        assert request.headers["DD-APPLICATION-KEY"] == "app-key"

    def test_unexpected_shape(self) -> None:
        api = make_api(lambda request: httpx.Response(200, json={"dashboards": "nope"}))

        with pytest.raises(ApiError, match="unexpected list response"):
            api.list("dashboard")


class TestMutations:
    """Tests for create, update and delete."""

    def test_create_returns_id(self) -> None:
        requests: list[httpx.Request] = []
        api = make_api(lambda request: httpx.Response(200, json={"id": 123, "name": "cpu"}), requests)

        assert api.create("monitor", {"name": "cpu"}) == 123
        assert requests[0].method == "POST"
        assert json.loads(requests[0].content) == {"name": "cpu"}

    def test_create_unwraps_data_envelope(self) -> None:
        api = make_api(lambda request: httpx.Response(200, json={"data": [{"id": "slo1"}]}))

        assert api.create("slo", {"name": "avail"}) == "slo1"

    def test_create_without_id(self) -> None:
        api = make_api(lambda request: httpx.Response(200, json={"name": "cpu"}))

        with pytest.raises(ApiError, match="response has no id"):
            api.create("monitor", {"name": "cpu"})

    def test_update_uses_put(self) -> None:
        requests: list[httpx.Request] = []
        api = make_api(lambda request: httpx.Response(200, json={"id": 1}), requests)

        api.update("monitor", 1, {"name": "cpu"})

        assert requests[0].method == "PUT"
        assert requests[0].url.path == "/api/v1/monitor/1"

    def test_monitor_delete_is_forced(self) -> None:
        requests: list[httpx.Request] = []
        api = make_api(lambda request: httpx.Response(200, json={"deleted_monitor_id": 1}), requests)

        api.delete("monitor", 1)

        assert requests[0].method == "DELETE"
        assert requests[0].url.params["force"] == "true"

    def test_dashboard_delete_not_forced(self) -> None:
        requests: list[httpx.Request] = []
        api = make_api(lambda request: httpx.Response(204), requests)

        api.delete("dashboard", "abc")

        assert "force" not in requests[0].url.params


class TestErrors:
    """Tests for error reporting."""

    def test_error_status(self) -> None:
        api = make_api(lambda request: httpx.Response(403, text='{"errors": ["Forbidden"]}'))

        with pytest.raises(ApiError) as exc_info:
            api.list("monitor")

        error = exc_info.value
        assert error.status == 403
        assert str(error) == 'GET /api/v1/monitor -> status 403: {"errors": ["Forbidden"]}'

    def test_error_body_truncated(self) -> None:
        api = make_api(lambda request: httpx.Response(500, text="x" * 2000))

        with pytest.raises(ApiError) as exc_info:
            api.show("monitor", 1)

        assert len(exc_info.value.body) == MAX_ERROR_BODY_LENGTH

    def test_transport_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        api = make_api(refuse)

        with pytest.raises(ApiError, match="connection refused") as exc_info:
            api.list("monitor")

        assert exc_info.value.status is None

    def test_invalid_json(self) -> None:
        api = make_api(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(ApiError, match="invalid JSON"):
            api.list("monitor")


class TestMalformedPayloads:
    """Tests for remote objects that cannot be parsed."""

    def test_listed_item_without_id(self) -> None:
        api = make_api(lambda request: httpx.Response(200, json=[{"name": "x"}]))

        with pytest.raises(ApiError) as exc_info:
            api.list("monitor")

        assert str(exc_info.value) == "GET /api/v1/monitor -> invalid monitor payload: monitor payload has no id"

    def test_listed_id_of_wrong_type(self) -> None:
        api = make_api(lambda request: httpx.Response(200, json=[{"id": [1], "name": "x"}]))

        with pytest.raises(ApiError, match="invalid monitor payload: id"):
            api.list("monitor")

    def test_listed_item_not_an_object(self) -> None:
        api = make_api(lambda request: httpx.Response(200, json=["nope"]))

        with pytest.raises(ApiError, match="unexpected monitor item: 'nope'"):
            api.list("monitor")

    def test_show_without_id(self) -> None:
        api = make_api(lambda request: httpx.Response(200, json={"title": "overview"}))

        with pytest.raises(ApiError, match=r"GET /api/v1/dashboard/abc -> invalid dashboard payload"):
            api.show("dashboard", "abc")
