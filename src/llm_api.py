"""
llm_api.py: LLM calls for workflow synthesis.

Pipeline:
User intent (free text)
    ->  (LLM synthesis)                 synthesize_workflow()
Candidate graph JSON (unvalidated)
    ->  (validate / repair / fallback)  (handled by the orchestrator)
Deployable n8n workflow
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

import httpx

from src.config import Settings, get_settings
from src.errors import CandidateUnavailable
from src.workflow.catalog import NodeCatalog, default_catalog

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an n8n workflow generator. Reply with ONE JSON object and nothing else.

Shape:
{
  "name": "<short workflow name>",
  "nodes": [{"id": "<unique id>", "typeId": "<node type>", "params": {...}}],
  "connections": [{"fromNodeId": "<id>", "fromPort": 0, "toNodeId": "<id>", "toPort": 0}]
}

Rules:
- Start with exactly one trigger node.
- Use only these node types: {node_types}
- Connections must form a DAG; ports are zero-based.
"""


# --------------------------
# LLM CLIENT
# --------------------------

class LLMClient:
    """
    Minimal client for an OpenAI-compatible chat-completions endpoint.
    """

    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.Client] = None):
        self.settings = settings or get_settings()
        self.model_name = self.settings.llm_model
        self.temperature = self.settings.llm_temperature
        self._http = http_client

    def is_configured(self) -> bool:
        return bool(self.settings.llm_api_key)

    def generate(self, prompt: str, input: str, task: str = "workflow_generation") -> str:
        """
        Send ``prompt`` as the system message and ``input`` as the user message.
        Raises CandidateUnavailable when unconfigured or when the call fails.
        """
        if not self.is_configured():
            raise CandidateUnavailable("LLM is not configured (CLIXEN_LLM_API_KEY unset)")

        payload = {
            "model": self.model_name,
            "temperature": float(self.temperature),
            "messages": [
                {"role": "system", "content": prompt},
                {"role": "user", "content": input},
            ],
            "n": 1,
        }
        headers = {"Authorization": f"Bearer {self.settings.llm_api_key}"}
        url = self.settings.llm_base_url.rstrip("/") + "/chat/completions"
        logger.info("LLM %s request: model=%s", task, self.model_name)
        try:
            if self._http is not None:
                resp = self._http.post(url, json=payload, headers=headers)
            else:
                with httpx.Client(timeout=self.settings.llm_timeout_seconds) as client:
                    resp = client.post(url, json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise CandidateUnavailable(f"LLM request failed: {e}") from e
        except ValueError as e:
            raise CandidateUnavailable(f"LLM returned a non-JSON body: {e}") from e

        try:
            choices = data.get("choices") or []
            content = choices[0].get("message", {}).get("content") if choices else None
        except (AttributeError, TypeError, KeyError, IndexError) as e:
            raise CandidateUnavailable(f"LLM reply has an unexpected shape: {e}") from e
        if not content or not isinstance(content, str):
            raise CandidateUnavailable("LLM returned no content")
        return content


# -------------------------
# PUBLIC API
# -------------------------

def build_system_prompt(catalog: Optional[NodeCatalog] = None) -> str:
    catalog = catalog or default_catalog()
    return SYSTEM_PROMPT.replace("{node_types}", ", ".join(sorted(catalog.type_ids())))


def synthesize_workflow(intent: str, llm: Optional[LLMClient] = None,
                        catalog: Optional[NodeCatalog] = None) -> str:
    """
    Ask the LLM for a candidate graph. Returns the JSON text, unvalidated.
    """
    llm = llm or LLMClient()
    response = llm.generate(build_system_prompt(catalog), intent, task="workflow_generation")
    return extract_json(response)


# -------------------------
# HELPERS
# -------------------------

_FENCE = re.compile(r"```(?:json|yaml)?\s*\n(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json(text: str) -> str:
    """
    Pull the JSON object out of an LLM reply: fenced block first, then the
    outermost braces. Returns the text unchanged if neither is found.
    """
    match = _FENCE.search(text)
    if match:
        text = match.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text.strip()


def extract_keywords(text: str) -> List[str]:
    words = re.findall(r"[A-Za-z]{3,}", text.lower())
    stop = {
        "the", "and", "for", "with", "from", "into", "about", "which", "have",
        "will", "should", "then", "when", "after", "within", "where", "that",
        "this", "every", "please", "want", "need", "create", "workflow",
        "automation", "make", "can", "you", "there", "their", "these", "those",
    }
    return sorted(set(w for w in words if w not in stop))
