"""MCP clients for talking to tool servers over stdio or HTTP (JSON-RPC 2.0)."""
import asyncio
import json
import logging
import subprocess
import threading
from queue import Empty, Queue
from typing import Any, Dict, Optional

import httpx

log = logging.getLogger(__name__)


class McpError(Exception):
    """Raised when an MCP server answers with a JSON-RPC error or an unusable body."""


class McpClient:
    """Client for communicating with MCP servers via stdio JSON-RPC."""

    def __init__(self, name: str, command: list[str], cwd: Optional[str] = None, timeout: float = 30.0):
        """Initialize MCP client.

        Args:
            name: Name of the client (for logging)
            command: Command to run the MCP server (e.g., ["npx", "shopify-catalog-mcp"])
            cwd: Working directory for the subprocess
            timeout: Per-request timeout in seconds
        """
        self.name = name
        self.timeout = timeout
        self.process = subprocess.Popen(
            command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=0,
            cwd=cwd
        )
        self.next_id = 1
        self.response_queue: Queue[Dict[str, Any]] = Queue()
        self._start_reader()

    def _start_reader(self):
        """Start reading responses from the server."""
        def reader():
            for line in self.process.stdout:
                line = line.strip()
                if not line:
                    continue
                try:
                    msg = json.loads(line)
                except json.JSONDecodeError:
                    # Servers may print banners on stdout
                    continue
                if msg.get("jsonrpc") == "2.0" and msg.get("id") is not None:
                    self.response_queue.put(msg)

        thread = threading.Thread(target=reader, daemon=True)
        thread.start()

    async def _request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a JSON-RPC request and wait for response."""
        request_id = self.next_id
        self.next_id += 1

        request = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params or {}
        }
        log.debug("[%s] -> %s #%d", self.name, method, request_id)

        self.process.stdin.write(json.dumps(request) + "\n")
        self.process.stdin.flush()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while loop.time() < deadline:
            try:
                response = await loop.run_in_executor(None, lambda: self.response_queue.get(timeout=0.1))
            except Empty:
                continue
            if response.get("id") != request_id:
                # Stale reply from a request that already timed out
                continue
            if "error" in response:
                raise McpError(f"RPC error: {response['error'].get('message')}")
            return response.get("result", {})
        raise TimeoutError(f"[{self.name}] request {request_id} ({method}) timed out")

    async def initialize(self):
        """Initialize the MCP server."""
        await self._request("initialize", {
            "clientInfo": {"name": self.name, "version": "0.1.0"},
            "capabilities": {}
        })

    async def list_tools(self) -> list[Dict[str, Any]]:
        """List available tools."""
        result = await self._request("tools/list")
        return result.get("tools", [])

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Call a tool with arguments."""
        return await self._request("tools/call", {
            "name": name,
            "arguments": arguments
        })

    async def close(self):
        """Close the client and terminate the process."""
        if self.process:
            self.process.terminate()
            self.process.wait()


class HttpMcpClient:
    """Same surface as McpClient, but each request is an HTTP POST."""

    def __init__(self, name: str, url: str, headers: Optional[Dict[str, str]] = None, timeout: float = 30.0):
        self.name = name
        self.url = url
        self.next_id = 1
        self._http = httpx.AsyncClient(headers=headers or {}, timeout=timeout)

    async def _request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        request_id = self.next_id
        self.next_id += 1
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}}
        log.debug("[%s] POST %s #%d", self.name, method, request_id)

        try:
            resp = await self._http.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise TimeoutError(f"[{self.name}] request {request_id} ({method}) timed out") from e
        except httpx.HTTPError as e:
            raise McpError(f"MCP HTTP transport failed: {e}") from e

        try:
            body = resp.json()
        except ValueError as e:
            raise McpError(f"MCP HTTP {resp.status_code}: failed to parse JSON response:\n{resp.text}") from e

        if resp.status_code >= 400:
            msg = (body.get("error") or {}).get("message") if isinstance(body, dict) else None
            raise McpError(f"MCP request failed: {msg or f'HTTP {resp.status_code}'}")
        if body.get("error"):
            err = body["error"]
            raise McpError(f"MCP error {err.get('code')}: {err.get('message')}")
        return body.get("result", {})

    async def initialize(self):
        await self._request("initialize", {
            "clientInfo": {"name": self.name, "version": "0.1.0"},
            "capabilities": {}
        })

    async def list_tools(self) -> list[Dict[str, Any]]:
        result = await self._request("tools/list")
        return result.get("tools", [])

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("tools/call", {"name": name, "arguments": arguments})

    async def close(self):
        await self._http.aclose()


async def resolve_tool_name(client: Any, candidates: list[str]) -> str | None:
    """Pick the first server tool matching one of `candidates` (exact, then substring)."""
    try:
        tools = await client.list_tools()
    except (McpError, TimeoutError) as e:
        log.warning("Could not list tools on %s: %s", getattr(client, "name", "mcp"), e)
        return None

    names = [t.get("name") for t in tools if isinstance(t, dict) and isinstance(t.get("name"), str)]
    if not names:
        return None

    for c in candidates:
        if c in names:
            return c

    lowered = [n.lower() for n in names]
    for c in candidates:
        for idx, n in enumerate(lowered):
            if c.lower() in n:
                return names[idx]
    return None
