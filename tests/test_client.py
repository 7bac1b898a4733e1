"""Tests for ResultsClient, with requests.Session.get patched out."""

import pytest
import requests

from resultcheck.client import ResultQuery, ResultsClient
from resultcheck.orchestrator import retrieve_results


QUERY = ResultQuery(key="id|S1234567D||", params=(("uin", "S1234567D"),))


@pytest.fixture
def client(settings):
    c = ResultsClient(settings)
    yield c
    c.close()


class TestSession:
    def test_bearer_header(self, client):
        assert client.s.headers["Authorization"] == "Bearer test-key-12345"
        assert client.s.headers["Accept"] == "application/json"


class TestFetch:
    """Test ResultsClient.fetch()."""

    def test_success(self, client, monkeypatch, make_response):
        calls = []

        def fake_get(url, **kwargs):
            calls.append((url, kwargs))
            return make_response(200, {"results": [{"result": "NEGATIVE"}]})

        monkeypatch.setattr(client.s, "get", fake_get)

        assert client.fetch(QUERY) == {"results": [{"result": "NEGATIVE"}]}
        url, kwargs = calls[0]
        assert url == "https://results.example.com/v2/results/patient"
        assert kwargs["params"] == {"uin": "S1234567D"}
        assert kwargs["timeout"] == 5
        assert kwargs["allow_redirects"] is False

    def test_error_status_raises_with_response(self, client, monkeypatch, make_response):
        monkeypatch.setattr(client.s, "get", lambda url, **kw: make_response(401, {"message": "Authentication failed."}))

        with pytest.raises(requests.HTTPError) as excinfo:
            client.fetch(QUERY)

        assert excinfo.value.response.status_code == 401

    def test_redirect_not_followed(self, client, monkeypatch, make_response):
        monkeypatch.setattr(
            client.s, "get",
            lambda url, **kw: make_response(301, text="", headers={"Location": "https://other/v2"}),
        )

        with pytest.raises(requests.HTTPError) as excinfo:
            client.fetch(QUERY)

        assert excinfo.value.response.status_code == 301

    def test_bad_json_is_plain_value_error(self, client, monkeypatch, make_response):
        monkeypatch.setattr(client.s, "get", lambda url, **kw: make_response(200, text="<html>"))

        with pytest.raises(ValueError) as excinfo:
            client.fetch(QUERY)

        assert not isinstance(excinfo.value, requests.RequestException)

    def test_connection_error_propagates(self, client, monkeypatch):
        def refuse(url, **kwargs):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(client.s, "get", refuse)

        with pytest.raises(requests.ConnectionError):
            client.fetch(QUERY)


class TestExecute:
    """End to end through the worker pool and the orchestrator."""

    @pytest.mark.asyncio
    async def test_execute_runs_fetch(self, client, monkeypatch, make_response):
        monkeypatch.setattr(client.s, "get", lambda url, **kw: make_response(200, {"results": []}))
        assert await client.execute(QUERY) == {"results": []}

    @pytest.mark.asyncio
    async def test_retrieve_results(self, client, monkeypatch, make_response, make_session):
        session = make_session(6)
        first = next(iter(session.subjects.values())).uin

        def fake_get(url, params=None, **kwargs):
            if params["uin"] == first:
                return make_response(500, {"message": "Internal error"})
            return make_response(200, {"results": [{"result": "POSITIVE"}]})

        monkeypatch.setattr(client.s, "get", fake_get)

        report = await retrieve_results(session, client)

        assert report.sent == 6
        assert report.failed == 1
        assert session.stats.positive_test_results == 5
        assert session.stats.no_test_results == 1
        assert "ERROR: Some unexpected response code" in session.logs
