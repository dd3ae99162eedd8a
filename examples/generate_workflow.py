#!/usr/bin/env python3
"""
Example: generate a workflow from a sentence and export it as n8n JSON.

Tries the template library first, then the LLM (when CLIXEN_LLM_API_KEY is
set), then the keyword synthesizer. Deploys to n8n only when
CLIXEN_N8N_API_KEY is set; otherwise writes the JSON for import by hand.
"""

import logging
import sys
from pathlib import Path

from src.config import get_settings
from src.generation.orchestrator import GenerationOrchestrator
from src.generation.sources import (
    ChainedCandidateSource, HeuristicSynthesizer, LLMCandidateSource, TemplateCandidateSource,
)
from src.integrations.n8n.client import N8nClient
from src.integrations.n8n.export import graph_to_n8n_file
from src.integrations.n8n.gateway import DeploymentGateway, namespace_graph
from src.llm_api import LLMClient
from src.workflow.validator import reliability_score


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    intent = " ".join(sys.argv[1:]) or "Email me the daily weather forecast"
    settings = get_settings()

    sources = [TemplateCandidateSource()]
    llm = LLMClient(settings)
    if llm.is_configured():
        sources.append(LLMCandidateSource(llm))
    sources.append(HeuristicSynthesizer())

    client = N8nClient(settings) if settings.n8n_api_key else None
    orchestrator = GenerationOrchestrator(
        ChainedCandidateSource(*sources),
        gateway=DeploymentGateway(client) if client else None,
    )

    result = orchestrator.run(intent, owner_id="demo")
    print(f"STATE: {result.state.value}  (repair passes: {result.repair_attempts}, "
          f"reliability: {reliability_score(result.defects)})")
    for attempt in result.audit_trail:
        print(f"  pass {attempt.attempt_number}: {', '.join(attempt.transformations_applied) or '-'}")
    print(result.user_message)

    if client is None:
        out_json_path = Path("generated_n8n_workflow.json")
        graph_to_n8n_file(namespace_graph(result.graph), out_json_path)
        print(f"Wrote n8n workflow JSON to: {out_json_path}")
    else:
        client.close()


if __name__ == '__main__':
    main()
