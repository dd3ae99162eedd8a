"""
Candidate sources: where a draft workflow for a user intent comes from.

The orchestrator only needs ``request_candidate(intent)`` to return something
graph-shaped (a dict, or JSON/YAML text). Sources raise CandidateUnavailable
when they have nothing to offer, so they can be chained.
"""

import copy
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from src import llm_api
from src.errors import CandidateUnavailable
from src.workflow.catalog import BASE, NodeCatalog

logger = logging.getLogger(__name__)

Candidate = Union[str, Dict[str, Any]]

TEMPLATES_DIR = Path(__file__).parent / "templates"
MIN_CONFIDENCE = 0.5


class CandidateSource(ABC):
    @abstractmethod
    def request_candidate(self, intent: str) -> Candidate:
        raise NotImplementedError()


# -------------------------
# TEMPLATE LIBRARY
# -------------------------

@dataclass
class Template:
    name: str
    slug: str
    workflow: Dict[str, Any]
    keywords: List[str] = field(default_factory=list)
    description: str = ""


@dataclass
class TemplateMatch:
    template: Template
    confidence: float


def load_templates(directory: Path = TEMPLATES_DIR) -> List[Template]:
    templates = []
    for path in sorted(directory.glob("*.yaml")):
        data = yaml.safe_load(path.read_text())
        for key in ["name", "slug", "workflow"]:
            if key not in data:
                raise ValueError(f"Template {path.name} missing required field: {key}")
        templates.append(Template(
            name=data["name"],
            slug=data["slug"],
            workflow=data["workflow"],
            keywords=[k.lower() for k in data.get("keywords", [])],
            description=data.get("description", ""),
        ))
    return templates


class TemplateCandidateSource(CandidateSource):
    """
    Matches an intent against the template library by keyword overlap.
    Only a match at or above ``min_confidence`` is returned.
    """

    def __init__(self, templates: Optional[List[Template]] = None, min_confidence: float = MIN_CONFIDENCE):
        self.templates = templates if templates is not None else load_templates()
        self.min_confidence = min_confidence

    def match(self, intent: str) -> List[TemplateMatch]:
        words = set(llm_api.extract_keywords(intent))
        matches = []
        for template in self.templates:
            if not template.keywords:
                continue
            hits = len(words.intersection(template.keywords))
            matches.append(TemplateMatch(template, hits / len(template.keywords)))
        return sorted(matches, key=lambda m: (-m.confidence, m.template.slug))

    def request_candidate(self, intent: str) -> Candidate:
        matches = self.match(intent)
        if not matches or matches[0].confidence < self.min_confidence:
            raise CandidateUnavailable("No template matched the request confidently")
        best = matches[0]
        logger.info("Template %s matched with confidence %.2f", best.template.slug, best.confidence)
        return copy.deepcopy(best.template.workflow)


# -------------------------
# NAIVE SYNTHESIS
# -------------------------

_SCHEDULE_WORDS = {"daily", "every", "hourly", "weekly", "morning", "evening", "schedule", "cron", "day"}
_WEBHOOK_WORDS = {"webhook", "form", "receive", "submission", "incoming"}
_HTTP_WORDS = {"http", "fetch", "api", "url", "download", "scrape", "get"}
_EMAIL_WORDS = {"email", "mail", "notify", "send"}
_URL = re.compile(r"https?://\S+")
_EMAIL = re.compile(r"[\w.+-]+@[\w-]+\.[\w.]+")


class HeuristicSynthesizer(CandidateSource):
    """Builds a linear trigger -> actions chain from keywords in the intent."""

    def request_candidate(self, intent: str) -> Candidate:
        words = set(re.findall(r"[a-z]+", intent.lower()))
        nodes: List[Dict[str, Any]] = []

        if words & _WEBHOOK_WORDS:
            trigger_type = "webhook"
            nodes.append({"id": "trigger", "typeId": BASE + "webhook",
                          "params": {"path": _slug(intent), "httpMethod": "POST"}})
        elif words & _SCHEDULE_WORDS:
            trigger_type = "schedule"
            nodes.append({"id": "trigger", "typeId": BASE + "scheduleTrigger", "params": {}})
        else:
            trigger_type = "manual"
            nodes.append({"id": "trigger", "typeId": BASE + "manualTrigger", "params": {}})

        url = _URL.search(intent)
        if words & _HTTP_WORDS or url:
            params = {"method": "GET"}
            if url:
                params["url"] = url.group(0).rstrip(".,)")
            nodes.append({"id": "fetch", "typeId": BASE + "httpRequest", "params": params})

        if words & _EMAIL_WORDS:
            address = _EMAIL.search(intent)
            params = {"subject": _title(intent)}
            if address:
                params["toEmail"] = address.group(0)
            nodes.append({"id": "email", "typeId": BASE + "emailSend", "params": params})

        if trigger_type == "webhook":
            nodes.append({"id": "respond", "typeId": BASE + "respondToWebhook",
                          "params": {"respondWith": "json"}})
        if len(nodes) == 1:
            nodes.append({"id": "done", "typeId": BASE + "noOp", "params": {}})

        connections = [
            {"fromNodeId": a["id"], "fromPort": 0, "toNodeId": b["id"], "toPort": 0}
            for a, b in zip(nodes, nodes[1:])
        ]
        return {"name": _title(intent), "nodes": nodes, "connections": connections}


def _title(intent: str) -> str:
    text = " ".join(intent.split())[:60].strip()
    return text[:1].upper() + text[1:] if text else "Untitled Workflow"


def _slug(intent: str) -> str:
    return "-".join(re.findall(r"[a-z0-9]+", intent.lower())[:4]) or "hook"


# -------------------------
# LLM SYNTHESIS
# -------------------------

class LLMCandidateSource(CandidateSource):
    def __init__(self, llm: Optional[llm_api.LLMClient] = None, catalog: Optional[NodeCatalog] = None):
        self.llm = llm
        self.catalog = catalog

    def request_candidate(self, intent: str) -> Candidate:
        return llm_api.synthesize_workflow(intent, llm=self.llm, catalog=self.catalog)


class ChainedCandidateSource(CandidateSource):
    """Asks each source in turn; the first one that produces a candidate wins."""

    def __init__(self, *sources: CandidateSource):
        self.sources = list(sources)

    def request_candidate(self, intent: str) -> Candidate:
        for source in self.sources:
            try:
                return source.request_candidate(intent)
            except CandidateUnavailable as e:
                logger.info("%s had no candidate: %s", type(source).__name__, e)
        raise CandidateUnavailable("No candidate source produced a workflow")
