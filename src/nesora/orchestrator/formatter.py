"""Markdown rendering of an aggregate report for the chat UI."""

import logging
from typing import Any, Dict, List

from nesora.orchestrator.intent import OperationKind
from nesora.orchestrator.normalizer import normalize

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "\n\n✅ Your request has been processed successfully."


def _plural(count: int) -> str:
    return "" if count == 1 else "s"


def _item_key(item: Any) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        return str(item.get("key") or item.get("id") or "Unknown")
    return str(item)


def _fields(item: Dict[str, Any]) -> Dict[str, Any]:
    fields = item.get("fields")
    return fields if isinstance(fields, dict) else {}


def _first_list(data: Dict[str, Any], *keys: str, default: List[Any]) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return default


def _format_created(data: Dict[str, Any], items: List[Any]) -> str:
    created = _first_list(data, "created", default=items)
    if not isinstance(created, list) or not created:
        return "### ✅ Tickets Created Successfully\n\n"

    out = "### ✅ Created Tickets\n\n"
    for item in created:
        summary = ""
        if isinstance(item, dict):
            summary = item.get("summary") or _fields(item).get("summary") or ""
        out += f"- **`{_item_key(item)}`**{f' - {summary}' if summary else ''}\n"
    return out + "\n"


def _format_fetched(items: List[Any]) -> str:
    out = f"### 📋 Fetched {len(items)} Ticket{_plural(len(items))}\n\n"
    if not items:
        return out + "No tickets found.\n\n"

    out += "| Key | Summary | Status | Assignee |\n|-----|---------|--------|----------|\n"
    for ticket in items:
        if not isinstance(ticket, dict):
            ticket = {"key": ticket}
        fields = _fields(ticket)
        status_field = fields.get("status") if isinstance(fields.get("status"), dict) else {}
        assignee_field = fields.get("assignee") if isinstance(fields.get("assignee"), dict) else {}

        key = ticket.get("key") or "N/A"
        summary = str(ticket.get("summary") or fields.get("summary") or "No summary")[:60]
        status = ticket.get("status") or status_field.get("name") or "Unknown"
        assignee = (
            ticket.get("assignee")
            or assignee_field.get("displayName")
            or assignee_field.get("emailAddress")
            or "Unassigned"
        )
        out += f"| `{key}` | {summary} | {status} | {assignee} |\n"
    return out + "\n"


def _format_key_list(entries: Any, title: str, fallback: str, suffix: str = "") -> str:
    if not isinstance(entries, list) or not entries:
        return fallback
    out = f"{title.format(count=len(entries), s=_plural(len(entries)))}\n\n"
    for item in entries:
        out += f"- **`{_item_key(item)}`**{suffix}\n"
    return out + "\n"


def _format_success(name: str, data: Any) -> str:
    if not isinstance(data, dict):
        data = {}
    items = normalize(data)
    kind = OperationKind.parse(name)

    if kind == OperationKind.CREATE_TICKET:
        return _format_created(data, items)
    if kind == OperationKind.FETCH_TICKET:
        return _format_fetched(items)
    if kind == OperationKind.UPDATE_TICKET:
        return _format_key_list(
            _first_list(data, "updated", "updated_tickets", default=items),
            "### ✏️ Updated {count} Ticket{s}",
            "### ✏️ Tickets Updated Successfully\n\n",
            suffix=" updated",
        )
    if kind == OperationKind.COMMENT_TICKET:
        return _format_key_list(
            _first_list(data, "commented", "comments", default=items),
            "### 💬 Added {count} Comment{s}",
            "### 💬 Comments Added Successfully\n\n",
        )
    if kind == OperationKind.DELETE_TICKET:
        return _format_key_list(
            _first_list(data, "deleted", default=items),
            "### 🗑️ Deleted {count} Ticket{s}",
            "### 🗑️ Tickets Deleted Successfully\n\n",
        )

    if data.get("message"):
        return f"{data['message']}\n\n"
    return f"✅ {name} completed\n\n"


def format_workflow_result(report: Any) -> str:
    """Render a report (AggregateReport or its dict form) as markdown.

    Never raises: anything unexpected degrades to a neutral success line.
    """
    if hasattr(report, "to_dict"):
        report = report.to_dict()
    if not isinstance(report, dict) or not isinstance(report.get("results"), list):
        return ""

    try:
        return _render(report)
    except Exception as e:
        logger.error(f"❌ Failed to format workflow result: {e}")
        return FALLBACK_MESSAGE


def _render(report: Dict[str, Any]) -> str:
    status = report.get("status")
    executed = report.get("intents_executed", 0)
    unresolved = report.get("unresolved") or []
    if not report["results"] and not unresolved:
        return FALLBACK_MESSAGE

    out = "\n\n"
    if status == "success":
        out += f"✅ **All {executed} operations completed successfully**\n\n"
    elif status == "partial":
        out += f"⚠️ **{executed} operations completed with some errors**\n\n"
    else:
        out += "❌ **Operations failed**\n\n"

    for result in report["results"]:
        if not isinstance(result, dict):
            continue
        name = str(result.get("intent") or "operation")
        if result.get("status") == "error":
            out += f"❌ **{name}** failed: {result.get('error')}\n\n"
            continue
        out += _format_success(name, result.get("data"))

    if unresolved:
        out += "### 🚫 Not Executed\n\n"
        for item in unresolved:
            missing = ", ".join(item.get("missing") or []) or "unknown"
            out += f"- **{item.get('intent')}** (`{item.get('id')}`) - waiting on: {missing}\n"
        out += "\n"

    return out
