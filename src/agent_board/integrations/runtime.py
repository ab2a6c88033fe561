"""HTTP client for the external agent runtime."""

import logging
from dataclasses import dataclass

import httpx

from agent_board.core.errors import DownstreamUnavailable

logger = logging.getLogger(__name__)


@dataclass
class SpawnReceipt:
    accepted: bool
    session_key: str | None = None


class AgentRuntimeClient:
    """Sends dispatch requests to the agent runtime.

    The runtime runs the prompt out of band and later reports back through
    the board's completion callbacks. A client without a URL is unconfigured:
    dispatches are skipped and pending jobs wait for the runtime to poll.
    """

    def __init__(
        self,
        base_url: str | None,
        token: str | None = None,
        *,
        spawn_path: str = "/api/v1/sessions/spawn",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self._token = token
        self._spawn_path = spawn_path if spawn_path.startswith("/") else f"/{spawn_path}"
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @property
    def configured(self) -> bool:
        return self.base_url is not None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def spawn(
        self,
        prompt: str,
        agent_id: str,
        label: str,
        timeout_seconds: int,
    ) -> SpawnReceipt:
        """Ask the runtime to run ``prompt`` on ``agent_id``."""
        if not self.configured:
            logger.info("Agent runtime not configured; %s left for pickup", label)
            return SpawnReceipt(accepted=False)

        body = {
            "task": prompt,
            "agentId": agent_id,
            "label": label,
            "timeoutSeconds": timeout_seconds,
        }
        try:
            response = await self._client.post(
                f"{self.base_url}{self._spawn_path}",
                json=body,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise DownstreamUnavailable(f"Agent runtime unreachable: {e}") from e

        if response.status_code >= 400:
            raise DownstreamUnavailable(
                f"Agent runtime rejected dispatch ({response.status_code}): {response.text[:200]}"
            )

        session_key = None
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            session_key = data.get("sessionKey") or data.get("session_key")
        return SpawnReceipt(accepted=True, session_key=session_key)

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()
