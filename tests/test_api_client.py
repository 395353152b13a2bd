"""
Tests for the HTTP client using httpx.MockTransport
"""
import json
from urllib.parse import parse_qs

import httpx
import pytest

from nodemorph_mcp.client import NodeMorphClient
from nodemorph_mcp.models import (
    APIConfiguration,
    ActionStatus,
    AuthenticationError,
    FilterSpec,
    NetworkError,
    SearchCriteria,
    TimeoutError,
    ValidationError,
)
from nodemorph_mcp.operations import parse_operation

pytestmark = pytest.mark.asyncio


class Recorder:
    """Collects requests and answers them from a handler function."""

    def __init__(self, handler):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


def make_client(handler, **config):
    recorder = Recorder(handler)
    api_config = APIConfiguration(base_url="http://repo.test:4502/", **config)
    return NodeMorphClient(api_config, transport=httpx.MockTransport(recorder)), recorder


def form_of(request: httpx.Request) -> dict[str, list[str]]:
    return parse_qs(request.content.decode(), keep_blank_values=True)


HITS = {
    "success": True,
    "results": 2,
    "total": 2,
    "hits": [
        {"jcr:path": "/content/site/a", "jcr:title": "A", "jcr:primaryType": "cq:Page"},
        {"jcr:path": "/content/site/b", "jcr:primaryType": "cq:Page"},
    ],
}


class TestSearch:
    async def test_sends_query_and_returns_hits_in_order(self):
        client, recorder = make_client(lambda r: httpx.Response(200, json=HITS))

        result = await client.search_criteria(
            SearchCriteria(path="/content/site", query="draft", match_property=True,
                           property_name="status", substring_match=True, page_only=True)
        )

        request = recorder.requests[0]
        assert request.url.path == "/bin/querybuilder.json"
        assert request.url.params.get("property.value") == "%draft%"
        assert request.url.params.get("property.operation") == "like"
        assert request.url.params.get("type") == "cq:Page"
        assert request.headers["authorization"].startswith("Basic ")
        assert result.count == 2
        assert [n.path for n in result.nodes()] == ["/content/site/a", "/content/site/b"]
        await client.close()

    @pytest.mark.parametrize("path", ["", "content/site"])
    async def test_path_must_be_absolute(self, path):
        client, recorder = make_client(lambda r: httpx.Response(200, json=HITS))

        with pytest.raises(ValidationError):
            await client.search(FilterSpec(path=path))
        assert recorder.requests == []

    async def test_server_error_carries_status_text(self):
        client, _ = make_client(lambda r: httpx.Response(500, text="Query failed: bad predicate"))

        with pytest.raises(NetworkError) as exc_info:
            await client.search(FilterSpec(path="/content"))

        assert exc_info.value.status_code == 500
        assert "Query failed: bad predicate" in str(exc_info.value)

    async def test_unauthorized(self):
        client, _ = make_client(lambda r: httpx.Response(401))

        with pytest.raises(AuthenticationError):
            await client.search(FilterSpec(path="/content"))

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client, _ = make_client(handler)

        with pytest.raises(TimeoutError):
            await client.search(FilterSpec(path="/content"))

    async def test_invalid_json(self):
        client, _ = make_client(lambda r: httpx.Response(200, text="<html>login</html>"))

        with pytest.raises(NetworkError, match="Invalid response format"):
            await client.search(FilterSpec(path="/content"))

    async def test_undecodable_body(self):
        body = b'{"results": 1, "hits": [{"jcr:path": "/content/a", "jcr:title": "\xff"}]}'
        client, _ = make_client(lambda r: httpx.Response(200, content=body))

        with pytest.raises(NetworkError, match="Invalid response format"):
            await client.search_criteria(SearchCriteria(path="/content"))


class TestExportCsv:
    async def test_writes_file(self, tmp_path):
        client, _ = make_client(lambda r: httpx.Response(200, json=HITS))
        target = tmp_path / "out" / "hits.csv"

        outcome = await client.export_csv(SearchCriteria(path="/content/site"), str(target))

        assert outcome == {"success": True, "written": True, "rows": 2, "output_file": str(target)}
        assert target.read_text(encoding="utf-8").splitlines()[0] == '"Path","jcr:title","jcr:primaryType"'

    async def test_empty_result_writes_nothing(self, tmp_path):
        client, _ = make_client(lambda r: httpx.Response(200, json={"results": 0, "hits": []}))
        target = tmp_path / "hits.csv"

        outcome = await client.export_csv(SearchCriteria(path="/content/site"), str(target))

        assert outcome["written"] is False
        assert not target.exists()


class TestNodeReads:
    async def test_get_node_parses_children(self):
        payload = {
            "jcr:primaryType": "cq:Page",
            "jcr:content": {"jcr:primaryType": "cq:PageContent", "jcr:title": "Home"},
        }
        client, recorder = make_client(lambda r: httpx.Response(200, json=payload))

        node = await client.get_node("/content/site", depth=1)

        assert recorder.requests[0].url.path == "/content/site.1.json"
        assert node.primary_type == "cq:Page"
        assert node.children["jcr:content"].path == "/content/site/jcr:content"
        assert node.children["jcr:content"].title == "Home"

    async def test_get_node_missing(self):
        client, _ = make_client(lambda r: httpx.Response(404))

        assert await client.get_node("/content/nope") is None


class TestWrites:
    async def test_update_properties_form(self):
        client, recorder = make_client(lambda r: httpx.Response(200))

        await client.update_properties(
            "/content/site/jcr:content",
            {"cq:tags": ["a", "b"], "cq:lastModified": "2026-01-02T03:04:05+00:00"},
            removals=["oldProp"],
        )

        request = recorder.requests[0]
        form = form_of(request)
        assert request.method == "POST"
        assert request.url.path == "/content/site/jcr:content"
        assert form["cq:tags"] == ["a", "b"]
        assert form["cq:tags@TypeHint"] == ["String[]"]
        assert form["cq:lastModified@TypeHint"] == ["Date"]
        assert form["oldProp@Delete"] == [""]

    async def test_create_node_form(self):
        client, recorder = make_client(lambda r: httpx.Response(201))

        await client.create_node("/content/site/", "teaser", "nt:unstructured", {"title": "Hi"})

        request = recorder.requests[0]
        assert request.url.path == "/content/site/teaser"
        assert form_of(request) == {"jcr:primaryType": ["nt:unstructured"], "title": ["Hi"]}

    async def test_copy_node_form(self):
        client, recorder = make_client(lambda r: httpx.Response(200))

        await client.copy_node("/content/a", "/content/b", replace=True)

        assert form_of(recorder.requests[0]) == {
            ":operation": ["copy"],
            ":dest": ["/content/b"],
            ":replace": ["true"],
        }

    async def test_write_failure(self):
        client, _ = make_client(lambda r: httpx.Response(409, text="Conflict at /content/b"))

        with pytest.raises(NetworkError, match="409"):
            await client.copy_node("/content/a", "/content/b")


class TestExecute:
    async def test_execute_goes_through_http(self):
        page = {"jcr:path": "/content/site/a", "jcr:primaryType": "nt:unstructured", "status": "draft"}

        def handler(request):
            if request.url.path == "/bin/querybuilder.json":
                return httpx.Response(200, json={"results": 1, "hits": [page]})
            return httpx.Response(200)

        client, recorder = make_client(handler)
        op = parse_operation(
            {"path": "/content/site", "operation": "add", "ifProp": "status", "ifValue": "draft",
             "properties": "reviewed=true"}
        )

        report = await client.execute(op)

        assert report.total == 1
        assert recorder.requests[-1].method == "POST"
        assert form_of(recorder.requests[-1]) == {"reviewed": ["true"]}

    async def test_unreadable_node_fails_only_that_node(self):
        pages = [
            {"jcr:path": "/content/site/p1", "jcr:primaryType": "cq:Page"},
            {"jcr:path": "/content/site/p2", "jcr:primaryType": "cq:Page"},
        ]

        def handler(request):
            if request.url.path == "/bin/querybuilder.json":
                return httpx.Response(200, json={"results": 2, "hits": pages})
            if request.url.path == "/content/site/p1/jcr:content.0.json":
                return httpx.Response(
                    200, content=b'{"jcr:primaryType": "cq:PageContent", "oldProp": "\xff"}'
                )
            if request.url.path == "/content/site/p2/jcr:content.0.json":
                return httpx.Response(200, json={"jcr:primaryType": "cq:PageContent", "oldProp": "x"})
            return httpx.Response(200)

        client, recorder = make_client(handler)
        op = parse_operation({"path": "/content/site", "operation": "delete", "propNames": "oldProp"})

        report = await client.execute(op)

        assert [(a.path, a.status) for a in report.actions] == [
            ("/content/site/p1", ActionStatus.FAILED),
            ("/content/site/p2/jcr:content", ActionStatus.SUCCESS),
        ]
        assert "Invalid response format" in report.actions[0].message
        assert form_of(recorder.requests[-1])["oldProp@Delete"] == [""]


class TestRemoteUpdate:
    async def test_posts_form_and_normalizes_report(self):
        answer = {
            "total": 5,
            "actions": [
                {"path": "/content/a", "action": "Delete", "status": "Done"},
                {"path": "/content/b", "action": "Delete", "status": "Skipped", "message": "none present"},
                {"path": "/content/c", "action": "Delete", "status": "Failed", "message": "locked"},
            ],
        }
        client, recorder = make_client(lambda r: httpx.Response(200, json=answer))
        op = parse_operation({"path": "/content", "operation": "delete", "propNames": "oldProp",
                              "dryRun": "true"})

        report = await client.remote_update(op)

        request = recorder.requests[0]
        assert request.url.path == "/bin/nodemorph/update"
        assert form_of(request)["propNames"] == ["oldProp"]
        assert form_of(request)["dryRun"] == ["true"]
        assert report.total == 1
        assert [a.status for a in report.actions] == [
            ActionStatus.SUCCESS,
            ActionStatus.SKIPPED,
            ActionStatus.FAILED,
        ]

    async def test_rejects_malformed_answer(self):
        client, _ = make_client(lambda r: httpx.Response(200, content=json.dumps([1, 2])))
        op = parse_operation({"path": "/content", "operation": "delete", "propNames": "a"})

        with pytest.raises(NetworkError):
            await client.remote_update(op)

    async def test_rejects_incomplete_action(self):
        answer = {"total": 1, "actions": [{"path": "/content/a"}]}
        client, _ = make_client(lambda r: httpx.Response(200, json=answer))
        op = parse_operation({"path": "/content", "operation": "delete", "propNames": "a"})

        with pytest.raises(NetworkError, match="Invalid action"):
            await client.remote_update(op)
