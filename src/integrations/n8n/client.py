""" REST client for the n8n public API (``/api/v1``). """

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from src.config import Settings, get_settings
from src.errors import DeploymentRejected, DeploymentTimeout, DeploymentUnavailable
from src.integrations.n8n.gateway import WorkflowEngine

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
PAGE_LIMIT = 250
# fields the n8n API accepts on create/update; anything else is rejected
WRITABLE_FIELDS = ("name", "nodes", "connections", "settings")


class N8nClient(WorkflowEngine):
    """
    Upserts workflows by name against an n8n instance.

    Transport errors, timeouts and 429/5xx responses are retried with bounded
    exponential backoff; other 4xx responses fail immediately.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 http_client: Optional[httpx.Client] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(
            base_url=self.settings.n8n_api_url.rstrip("/"),
            timeout=self.settings.http_timeout_seconds,
        )
        if self.settings.n8n_api_key:
            self._http.headers["X-N8N-API-KEY"] = self.settings.n8n_api_key
        self._http.headers.setdefault("Accept", "application/json")

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "N8nClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------------------------
    # ENGINE INTERFACE
    # -------------------------

    def list_existing_names(self, namespace_prefix: str) -> Set[str]:
        return {w["name"] for w in self.list_workflows()
                if isinstance(w.get("name"), str) and w["name"].startswith(namespace_prefix)}

    def create_or_update_workflow(self, workflow: Dict[str, Any]) -> str:
        body = {k: workflow[k] for k in WRITABLE_FIELDS if k in workflow}
        body.setdefault("settings", {})
        existing_id = self.find_workflow_id(body["name"])
        if existing_id is not None:
            logger.info("Updating n8n workflow %s (%s)", existing_id, body["name"])
            data = self._request("PUT", f"/workflows/{existing_id}", json=body)
        else:
            logger.info("Creating n8n workflow %s", body["name"])
            data = self._request("POST", "/workflows", json=body)
        if data.get("id") is None and existing_id is None:
            raise DeploymentRejected(f"n8n did not return an id for {body['name']!r}")
        external_id = str(data.get("id") or existing_id)
        if self.settings.n8n_activate_on_deploy:
            self.activate(external_id)
        return external_id

    # -------------------------
    # REST HELPERS
    # -------------------------

    def list_workflows(self) -> List[Dict[str, Any]]:
        workflows: List[Dict[str, Any]] = []
        cursor = None
        while True:
            params: Dict[str, Any] = {"limit": PAGE_LIMIT}
            if cursor:
                params["cursor"] = cursor
            page = self._request("GET", "/workflows", params=params)
            data = page.get("data") or []
            if not isinstance(data, list):
                raise DeploymentRejected("n8n GET /workflows returned no workflow list")
            workflows.extend(w for w in data if isinstance(w, dict))
            cursor = page.get("nextCursor")
            if not cursor:
                return workflows

    def find_workflow_id(self, name: str) -> Optional[str]:
        for workflow in self.list_workflows():
            if workflow.get("name") == name and workflow.get("id") is not None:
                return str(workflow["id"])
        return None

    def activate(self, external_id: str) -> None:
        self._request("POST", f"/workflows/{external_id}/activate")

    def _backoff(self, attempt: int) -> float:
        return min(self.settings.deploy_backoff_base * (2 ** attempt), self.settings.deploy_backoff_max)

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        retries = self.settings.deploy_max_retries
        for attempt in range(retries + 1):
            last = attempt == retries
            try:
                response = self._http.request(method, path, **kwargs)
            except httpx.TimeoutException as e:
                if last:
                    raise DeploymentTimeout(f"n8n {method} {path} timed out") from e
                logger.warning("n8n %s %s timed out (attempt %d)", method, path, attempt + 1)
            except httpx.TransportError as e:
                if last:
                    raise DeploymentUnavailable(f"n8n {method} {path} failed: {e}") from e
                logger.warning("n8n %s %s failed: %s (attempt %d)", method, path, e, attempt + 1)
            else:
                if response.status_code in RETRYABLE_STATUS:
                    if last:
                        raise DeploymentUnavailable(
                            f"n8n {method} {path} returned {response.status_code}")
                    logger.warning("n8n %s %s returned %d (attempt %d)",
                                   method, path, response.status_code, attempt + 1)
                elif response.is_error:
                    raise DeploymentRejected(
                        f"n8n {method} {path} returned {response.status_code}: {response.text[:200]}")
                else:
                    return _decode(response, method, path)
            self._sleep(self._backoff(attempt))
        raise AssertionError("unreachable")


def _decode(response: httpx.Response, method: str, path: str) -> Dict[str, Any]:
    """ Every endpoint used here answers with a JSON object; anything else is a rejection. """
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError as e:
        raise DeploymentRejected(f"n8n {method} {path} returned a non-JSON body") from e
    if not isinstance(body, dict):
        raise DeploymentRejected(f"n8n {method} {path} returned {type(body).__name__}, expected an object")
    return body
