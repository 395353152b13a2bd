"""NodeMorph API client - HTTP plumbing and the repository read/write surface."""

import sys
from datetime import datetime
from typing import Any, Mapping, Sequence

import httpx

from ..models import (
    PN_LAST_MODIFIED,
    APIConfiguration,
    AuthenticationError,
    NetworkError,
    Node,
    PropertyValue,
    TimeoutError,
)


def log_event(message: str, component: str = "CLIENT") -> None:
    """Log an event to stderr with timestamp and consistent formatting."""
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    print(f"[{timestamp}] [{component}] {message}", file=sys.stderr, flush=True)


class _ClientLogger:
    """Lightweight logger that delegates to log_event.

    Client code logs through this instead of the logging module so its output
    reaches the MCP host console regardless of how the host configured
    logging.
    """

    def __init__(self, component: str = "CLIENT") -> None:
        self._component = component

    def _msg(self, msg: object) -> str:
        try:
            return str(msg)
        except Exception:
            return repr(msg)

    def info(self, msg: object) -> None:
        log_event(self._msg(msg), self._component)

    def warning(self, msg: object) -> None:
        log_event(f"WARNING: {self._msg(msg)}", self._component)

    def error(self, msg: object) -> None:
        log_event(f"ERROR: {self._msg(msg)}", self._component)

    def debug(self, msg: object) -> None:
        log_event(f"DEBUG: {self._msg(msg)}", self._component)


class NodeMorphClientCore:
    """Core NodeMorph API client - transport and node CRUD."""

    def __init__(self, config: APIConfiguration, transport: httpx.AsyncBaseTransport | None = None):
        """Initialize the client.

        ``transport`` replaces the network transport (tests pass an
        ``httpx.MockTransport``).
        """
        self.config = config
        self.base_url = config.base_url
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def user_id(self) -> str:
        return self.config.username

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.config.username, self.config.password.get_secret_value()),
                headers={"Accept": "application/json"},
                timeout=httpx.Timeout(self.config.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "NodeMorphClientCore":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _request(self, method: str, url: str, operation: str, **kwargs: Any) -> httpx.Response:
        """Send one request; transport failures become NetworkError. No retries."""
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as err:
            raise TimeoutError(operation) from err
        except httpx.HTTPError as err:
            raise NetworkError(f"{operation} failed: {err}") from err

    @staticmethod
    def _check_response(response: httpx.Response) -> None:
        """Raise on any non-success status, carrying the server's status text."""
        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Not authorized ({response.status_code} {response.reason_phrase})",
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            detail = response.text.strip()
            message = f"{response.status_code} {response.reason_phrase}"
            if detail:
                message = f"{message}: {detail[:500]}"
            raise NetworkError(message, status_code=response.status_code)

    async def _handle_response(self, response: httpx.Response) -> Any:
        """Check the status and decode the JSON body."""
        self._check_response(response)
        try:
            return response.json()
        except ValueError as err:  # JSONDecodeError or UnicodeDecodeError
            raise NetworkError("Invalid response format from repository") from err

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def query(self, params: Sequence[tuple[str, str]]) -> dict[str, Any]:
        """Run one query against the query endpoint and return the raw payload."""
        response = await self._request("GET", self.config.query_endpoint, "query", params=list(params))
        data = await self._handle_response(response)
        if not isinstance(data, dict):
            raise NetworkError("Invalid response format from query endpoint")
        return data

    async def find_nodes(self, params: Sequence[tuple[str, str]]) -> list[Node]:
        """Run a query and turn every hit into a Node."""
        data = await self.query(params)
        hits = data.get("hits") or []
        return [Node.from_hit(hit) for hit in hits if isinstance(hit, dict)]

    async def get_node(self, path: str, depth: int = 0) -> Node | None:
        """Read one node (and ``depth`` levels of children); None when absent."""
        response = await self._request("GET", f"{path}.{depth}.json", f"get_node {path}")
        if response.status_code == 404:
            return None
        data = await self._handle_response(response)
        if not isinstance(data, dict):
            raise NetworkError(f"Invalid node payload for {path}")
        return Node.from_json(path, data)

    # ------------------------------------------------------------------
    # Writes (Sling POST servlet contract)
    # ------------------------------------------------------------------

    @staticmethod
    def _encode_values(values: Mapping[str, PropertyValue]) -> list[tuple[str, str]]:
        form: list[tuple[str, str]] = []
        for key, value in values.items():
            if isinstance(value, list):
                form.extend((key, v) for v in value)
                form.append((f"{key}@TypeHint", "String[]"))
            else:
                form.append((key, value))
                if key == PN_LAST_MODIFIED:
                    form.append((f"{key}@TypeHint", "Date"))
        return form

    async def _post(self, path: str, form: list[tuple[str, str]], operation: str) -> None:
        data: dict[str, list[str]] = {}
        for key, value in form:
            data.setdefault(key, []).append(value)
        response = await self._request("POST", path, operation, data=data)
        self._check_response(response)

    async def update_properties(
        self,
        path: str,
        values: Mapping[str, PropertyValue],
        removals: Sequence[str] = (),
    ) -> None:
        """Set and remove properties on one node in a single request."""
        form = self._encode_values(values)
        form.extend((f"{name}@Delete", "") for name in removals)
        await self._post(path, form, f"update {path}")

    async def create_node(
        self,
        parent_path: str,
        name: str,
        primary_type: str,
        properties: Mapping[str, PropertyValue],
    ) -> None:
        """Create ``parent_path/name`` with a primary type and initial properties."""
        form = [("jcr:primaryType", primary_type)]
        form.extend(self._encode_values(properties))
        await self._post(f"{parent_path.rstrip('/')}/{name}", form, f"create {parent_path}/{name}")

    async def copy_node(self, source: str, target: str, replace: bool = False) -> None:
        """Copy the subtree at ``source`` to ``target``."""
        form = [(":operation", "copy"), (":dest", target)]
        if replace:
            form.append((":replace", "true"))
        await self._post(source, form, f"copy {source}")
