"""
Pytest configuration and shared fixtures

InMemoryRepository stands in for the content repository: it answers the
candidate queries the executor sends and records every mutation call, so
tests can assert on both the report and the repository state.
"""
import fnmatch

import pytest

from nodemorph_mcp.models import NT_BASE, NT_PAGE, PN_PRIMARY_TYPE, NetworkError, Node


class InMemoryRepository:
    """Path-keyed tree store implementing the NodeRepository protocol."""

    def __init__(self):
        self.nodes: dict[str, dict] = {"/": {PN_PRIMARY_TYPE: "rep:root"}}
        self.calls: list[tuple] = []
        self.queries: list[list[tuple[str, str]]] = []
        self.fail_paths: set[str] = set()

    # -- fixture helpers ---------------------------------------------------

    def add(self, path: str, primary_type: str = "nt:unstructured", **props) -> "InMemoryRepository":
        self.nodes[path] = {PN_PRIMARY_TYPE: primary_type, **props}
        return self

    def add_page(self, path: str, **content_props) -> "InMemoryRepository":
        self.add(path, NT_PAGE)
        self.add(f"{path}/jcr:content", "cq:PageContent", **content_props)
        return self

    def props(self, path: str) -> dict:
        return self.nodes[path]

    def _node(self, path: str) -> Node:
        return Node.from_json(path, dict(self.nodes[path]))

    @property
    def mutations(self) -> list[tuple]:
        return [c for c in self.calls if c[0] != "get"]

    # -- NodeRepository ----------------------------------------------------

    async def find_nodes(self, params):
        self.queries.append(list(params))
        query = dict(params)
        scope = query["path"].rstrip("/")
        node_type = query.get("type", NT_BASE)
        name_glob = query.get("nodename")

        found = []
        for path in self.nodes:
            if not path.startswith(scope + "/"):
                continue
            if node_type != NT_BASE and self.nodes[path][PN_PRIMARY_TYPE] != node_type:
                continue
            if name_glob and not fnmatch.fnmatchcase(path.rsplit("/", 1)[1], name_glob):
                continue
            found.append(self._node(path))
        return found

    async def get_node(self, path, depth=0):
        self.calls.append(("get", path))
        if path not in self.nodes:
            return None
        return self._node(path)

    def _check(self, path):
        if path in self.fail_paths:
            raise NetworkError(f"500 Internal Server Error: cannot write {path}", status_code=500)

    async def update_properties(self, path, values, removals=()):
        self._check(path)
        self.calls.append(("update", path, dict(values), list(removals)))
        props = self.nodes[path]
        props.update(values)
        for name in removals:
            props.pop(name, None)

    async def create_node(self, parent_path, name, primary_type, properties):
        path = f"{parent_path.rstrip('/')}/{name}"
        self._check(path)
        self.calls.append(("create", path, primary_type, dict(properties)))
        self.nodes[path] = {PN_PRIMARY_TYPE: primary_type, **properties}

    async def copy_node(self, source, target, replace=False):
        self._check(target)
        self.calls.append(("copy", source, target, replace))
        for path in list(self.nodes):
            if path == source or path.startswith(source + "/"):
                self.nodes[target + path[len(source):]] = dict(self.nodes[path])


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def site(repo):
    """A small site: three pages, a component tree and a DAM-like folder."""
    repo.add("/content", "sling:Folder")
    repo.add("/content/site", NT_PAGE)
    repo.add("/content/site/jcr:content", "cq:PageContent", **{"jcr:title": "Site"})
    repo.add_page("/content/site/skitouring", **{"jcr:title": "Skitouring", "status": "draft"})
    repo.add_page("/content/site/arctic", **{"jcr:title": "Arctic Surfing", "status": "published"})
    repo.add_page("/content/site/wilderness", **{"jcr:title": "Hours of Wilderness", "status": "draft"})
    repo.add("/content/site/skitouring/jcr:content/root", "nt:unstructured")
    repo.add(
        "/content/site/skitouring/jcr:content/root/hero_image",
        "nt:unstructured",
        fileReference="/content/dam/hero.jpg",
    )
    return repo
