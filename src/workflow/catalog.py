""" Read-only registry of the n8n node types a generated workflow may use. """
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from src.workflow.models import NodeTypeSpec

logger = logging.getLogger(__name__)

BASE = "n8n-nodes-base."


class NodeCatalog:
    """ Immutable lookup table of NodeTypeSpec by type id. """

    def __init__(self, specs: Iterable[NodeTypeSpec]):
        table: Dict[str, NodeTypeSpec] = {}
        for spec in specs:
            if spec.type_id in table:
                raise ValueError(f"Duplicate node type in catalog: {spec.type_id}")
            table[spec.type_id] = spec
        self._specs = table

    def lookup(self, type_id: str) -> Optional[NodeTypeSpec]:
        """ Return the spec for ``type_id``, or None if the type is unknown. """
        return self._specs.get(type_id)

    def __contains__(self, type_id: str) -> bool:
        return type_id in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def type_ids(self) -> List[str]:
        return list(self._specs)

    def triggers(self) -> List[NodeTypeSpec]:
        return [s for s in self._specs.values() if s.is_trigger]


def _node(short: str, required: Tuple[str, ...] = (), optional: Optional[Dict] = None,
          inputs: int = 1, outputs: int = 1, defaults: Optional[Dict] = None,
          display: str = "", prefix: str = BASE) -> NodeTypeSpec:
    return NodeTypeSpec(
        type_id=prefix + short,
        required_params=required,
        optional_params=optional or {},
        input_ports=inputs,
        output_ports=outputs,
        defaults=defaults or {},
        display_name=display or short,
    )


# MVP-compatible nodes. OAuth-bound nodes (gmail, slack, ...) are deliberately
# absent and reach the catalog only through TYPE_ALIASES.
_BUILTIN_SPECS: List[NodeTypeSpec] = [
    # triggers
    _node("webhook", required=("path",), optional={"httpMethod": "GET", "responseMode": "onReceived"},
          inputs=0, defaults={"path": "clixen-hook"}, display="Webhook"),
    _node("scheduleTrigger", required=("rule",), inputs=0,
          defaults={"rule": {"interval": [{"field": "days", "daysInterval": 1}]}},
          display="Schedule Trigger"),
    _node("manualTrigger", inputs=0, display="Manual Trigger"),
    _node("errorTrigger", inputs=0, display="Error Trigger"),
    _node("interval", optional={"interval": 1, "unit": "hours"}, inputs=0, display="Interval"),

    # data processing
    _node("set", optional={"values": {}, "keepOnlySet": False}, display="Set"),
    _node("function", required=("functionCode",), defaults={"functionCode": "return items;"},
          display="Function"),
    _node("code", required=("jsCode",), optional={"mode": "runOnceForAllItems"},
          defaults={"jsCode": "return $input.all();"}, display="Code"),
    _node("if", optional={"conditions": {}}, outputs=2, display="IF"),
    _node("switch", optional={"rules": {}}, outputs=4, display="Switch"),
    _node("merge", optional={"mode": "append"}, inputs=2, display="Merge"),
    _node("splitInBatches", optional={"batchSize": 10}, outputs=2, display="Split In Batches"),
    _node("itemLists", optional={"operation": "splitOutItems"}, display="Item Lists"),
    _node("aggregate", optional={"aggregate": "aggregateAllItemData"}, display="Aggregate"),
    _node("limit", optional={"maxItems": 1}, display="Limit"),
    _node("sort", optional={"sortFieldsUi": {}}, display="Sort"),
    _node("removeDuplicates", optional={"compare": "allFields"}, display="Remove Duplicates"),

    # communication
    _node("httpRequest", required=("url",), optional={"method": "GET", "options": {}},
          defaults={"url": "https://api.example.com/endpoint"}, display="HTTP Request"),
    _node("emailSend", required=("toEmail", "subject"),
          optional={"fromEmail": "", "text": "", "html": ""},
          defaults={"toEmail": '={{$json["email"]}}', "subject": "Notification from Clixen"},
          display="Send Email"),
    _node("respondToWebhook", required=("respondWith",),
          defaults={"respondWith": "json"}, display="Respond to Webhook"),

    # files and data
    _node("csv", optional={"operation": "toFile"}, display="CSV"),
    _node("xml", optional={"mode": "jsonToxml"}, display="XML"),
    _node("html", optional={"operation": "extractHtmlContent"}, display="HTML"),
    _node("markdown", optional={"mode": "markdownToHtml"}, display="Markdown"),
    _node("spreadsheetFile", optional={"operation": "fromFile", "fileFormat": "csv"},
          display="Spreadsheet File"),

    # utilities
    _node("dateTime", optional={"action": "format"}, display="Date & Time"),
    _node("wait", optional={"amount": 1, "unit": "seconds"}, display="Wait"),
    _node("noOp", display="No Operation"),
    _node("stopAndError", optional={"errorMessage": ""}, outputs=0, display="Stop and Error"),
    _node("crypto", optional={"action": "hash"}, display="Crypto"),

    # ai
    _node("openAi", required=("prompt",), optional={"model": "gpt-4o-mini", "temperature": 0.7},
          display="OpenAI"),
]


def _aliases() -> Dict[str, Tuple[str, ...]]:
    table: Dict[str, Tuple[str, ...]] = {
        # OAuth-bound nodes, replaced by credential-free equivalents
        BASE + "gmail": (BASE + "emailSend",),
        BASE + "googleSheets": (BASE + "spreadsheetFile",),
        BASE + "googleDrive": (BASE + "httpRequest",),
        BASE + "slack": (BASE + "httpRequest",),
        BASE + "discord": (BASE + "httpRequest",),
        BASE + "twitter": (BASE + "httpRequest",),
        BASE + "github": (BASE + "httpRequest",),
        BASE + "notion": (BASE + "httpRequest",),
        BASE + "airtable": (BASE + "httpRequest",),
        BASE + "hubspot": (BASE + "httpRequest",),
        BASE + "microsoftTeams": (BASE + "httpRequest",),
        # legacy and renamed ids
        BASE + "cron": (BASE + "scheduleTrigger", BASE + "interval"),
        BASE + "start": (BASE + "manualTrigger",),
        BASE + "functionItem": (BASE + "function", BASE + "code"),
        BASE + "emailSendSmtp": (BASE + "emailSend",),
        BASE + "respond": (BASE + "respondToWebhook",),
        "@n8n/n8n-nodes-langchain.openAi": (BASE + "openAi",),
    }
    # bare short names ("webhook", "httpRequest") map to the full id
    for spec in _BUILTIN_SPECS:
        table.setdefault(spec.type_id[len(BASE):], (spec.type_id,))
    return table


TYPE_ALIASES: Dict[str, Tuple[str, ...]] = _aliases()

_DEFAULT_CATALOG = NodeCatalog(_BUILTIN_SPECS)
logger.debug("Node catalog loaded with %d types", len(_DEFAULT_CATALOG))


def default_catalog() -> NodeCatalog:
    """ Process-wide catalog, loaded at import and never mutated. """
    return _DEFAULT_CATALOG
