"""
Tests for the Tavily search connector against a mocked transport.
"""
import json

import httpx
import pytest

from vaultflow.services.connectors.tavily import MAX_SNIPPET_CHARS, TavilyConnector
from vaultflow.services.errors import SearchError


def _connector(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return TavilyConnector(api_key="tvly-test", client=client)


class TestTavilySearch:
    def test_normalises_results(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"results": [
                {"url": "https://github.com/a", "title": " Repo ", "content": "x" * 900, "score": 0.8},
                {"title": "no url"},
                {"url": "https://dev.to/b", "content": None},
            ]})

        results = _connector(handler).search("rust", 5, include_domains=["github.com"])

        assert seen["body"]["query"] == "rust"
        assert seen["body"]["max_results"] == 5
        assert seen["body"]["include_domains"] == ["github.com"]
        assert seen["auth"] == "Bearer tvly-test"
        assert [r.url for r in results] == ["https://github.com/a", "https://dev.to/b"]
        assert results[0].title == "Repo"
        assert len(results[0].snippet) == MAX_SNIPPET_CHARS
        assert results[1].title == "https://dev.to/b"
        assert results[1].score == 0.0

    def test_no_domain_filter_is_omitted(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"results": []})

        assert _connector(handler).search("rust", 3) == []
        assert "include_domains" not in seen["body"]

    def test_http_error_raises_search_error(self):
        with pytest.raises(SearchError):
            _connector(lambda request: httpx.Response(500, text="boom")).search("rust", 3)

    @pytest.mark.parametrize("body", [
        ["unexpected"],
        {"results": ["not-an-object"]},
        {"results": [{"url": "https://github.com/a", "score": "high"}]},
    ])
    def test_malformed_body_raises_search_error(self, body):
        with pytest.raises(SearchError, match="Unexpected Tavily response"):
            _connector(lambda request: httpx.Response(200, json=body)).search("rust", 3)

    def test_non_json_body_raises_search_error(self):
        with pytest.raises(SearchError):
            _connector(lambda request: httpx.Response(200, text="<html>")).search("rust", 3)

    def test_missing_key(self):
        connector = TavilyConnector(api_key=None)
        connector.api_key = None
        with pytest.raises(SearchError):
            connector.search("rust", 3)
