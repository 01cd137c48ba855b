import os
import json
import logging

import aiohttp
import websockets

_LOGGER = logging.getLogger("homedigest.ha")

# Supervisor-provided auth and endpoints
SUPERVISOR_TOKEN = os.environ.get("SUPERVISOR_TOKEN") or os.environ.get("HASSIO_TOKEN")
SUPERVISOR_HTTP = os.environ.get("SUPERVISOR_URL", "http://supervisor")
BASE_HTTP = os.environ.get("SUPERVISOR_API", f"{SUPERVISOR_HTTP}/core/api")
WS_URL = os.environ.get("SUPERVISOR_WS", "ws://supervisor/core/websocket")


class HAClient:
    """
    Thin async client for Home Assistant when running inside a Supervisor add-on.
    Uses REST for states, services and the Supervisor add-on API, and short-lived
    WebSocket connections for commands that only exist over WS (config entries,
    system log, traces).
    """

    def __init__(self, token: str | None = None) -> None:
        self.token = token or SUPERVISOR_TOKEN
        if not self.token:
            raise RuntimeError(
                "SUPERVISOR_TOKEN not set. Ensure your add-on config.yaml enables "
                "homeassistant_api: true and hassio_api: true (and restart the add-on)."
            )
        self.session = aiohttp.ClientSession(
            headers={
                "Authorization": f"Bearer {self.token}",
                "Content-Type": "application/json",
            },
            timeout=aiohttp.ClientTimeout(total=60),
        )
        self._req_id = 1

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        try:
            await self.session.close()
        except Exception as e:
            _LOGGER.debug("Error closing HA session: %s", e)

    # ---------------- REST helpers ----------------

    async def states(self) -> list[dict]:
        """Return all entity states."""
        url = f"{BASE_HTTP}/states"
        async with self.session.get(url) as r:
            r.raise_for_status()
            return await r.json()

    async def config(self) -> dict:
        """Core config (version, location name); doubles as a connectivity check."""
        async with self.session.get(f"{BASE_HTTP}/config") as r:
            r.raise_for_status()
            return await r.json()

    async def call_service(self, domain: str, service: str, data: dict) -> dict | list:
        """Call a Home Assistant service."""
        url = f"{BASE_HTTP}/services/{domain}/{service}"
        async with self.session.post(url, data=json.dumps(data)) as r:
            txt = await r.text()
            if r.status >= 400:
                _LOGGER.error("Service call failed %s: %s", url, txt)
            r.raise_for_status()
            return json.loads(txt) if txt else {}

    # ---------------- Supervisor helpers ----------------

    async def _supervisor_get(self, path: str) -> dict:
        url = f"{SUPERVISOR_HTTP}{path}"
        async with self.session.get(url) as r:
            r.raise_for_status()
            body = await r.json()
        # Supervisor wraps everything in {"result": "ok", "data": {...}}
        if body.get("result") not in (None, "ok"):
            raise RuntimeError(f"Supervisor call {path} failed: {body.get('message') or body}")
        return body.get("data") or {}

    async def addons(self) -> list[dict]:
        """Installed add-ons (name, slug, state, update_available, version...)."""
        data = await self._supervisor_get("/addons")
        return data.get("addons") or []

    async def addon_info(self, slug: str) -> dict:
        """Detailed add-on info; carries ``boot`` (auto/manual)."""
        return await self._supervisor_get(f"/addons/{slug}/info")

    async def addon_stats(self, slug: str) -> dict:
        """Resource usage of a running add-on (cpu_percent, memory_percent)."""
        return await self._supervisor_get(f"/addons/{slug}/stats")

    # ---------------- WebSocket helpers ----------------

    def _next_id(self) -> int:
        self._req_id += 1
        return self._req_id

    async def _ws_auth(self, ws) -> None:
        """
        Proper HA WS handshake:
        1) Server sends {"type": "auth_required"}
        2) Client sends {"type": "auth", "access_token": token}
        3) Server sends {"type": "auth_ok"} (or "auth_invalid")
        """
        first = json.loads(await ws.recv())
        if first.get("type") != "auth_required":
            raise RuntimeError(f"WebSocket unexpected greeting: {first}")

        await ws.send(json.dumps({"type": "auth", "access_token": self.token}))

        second = json.loads(await ws.recv())
        t = second.get("type")
        if t == "auth_ok":
            return
        if t == "auth_invalid":
            raise RuntimeError(f"WebSocket auth_invalid: {second.get('message') or second}")
        raise RuntimeError(f"WebSocket auth failed: {second}")

    async def _ws_once(self, req_type: str, payload: dict | None = None):
        """Open a short-lived WS, send a single request, return its .result."""
        req_id = self._next_id()
        async with websockets.connect(WS_URL, open_timeout=10, close_timeout=5) as ws:
            await self._ws_auth(ws)
            body = {"id": req_id, "type": req_type}
            if payload:
                body.update(payload)
            await ws.send(json.dumps(body))
            # Wait for matching id
            while True:
                msg = json.loads(await ws.recv())
                if msg.get("id") != req_id:
                    continue
                if msg.get("type") != "result":
                    raise RuntimeError(f"Unexpected WS message: {msg}")
                if not msg.get("success", False):
                    raise RuntimeError(f"WS call {req_type} failed: {msg}")
                return msg.get("result")

    async def config_entries(self) -> list[dict]:
        """Integration config entries with their load state."""
        return await self._ws_once("config_entries/get") or []

    async def system_log(self) -> list[dict]:
        """Entries currently held by the system_log integration (WARNING and up)."""
        return await self._ws_once("system_log/list") or []

    async def automation_traces(self) -> list[dict]:
        """Stored run traces for all automations."""
        return await self._ws_once("trace/list", {"domain": "automation"}) or []
