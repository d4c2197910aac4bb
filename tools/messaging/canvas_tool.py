"""canvas — build and send LINE Flex Messages (cards, lists, carousels)."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from channels.base import NotifierError
from tools.base import BaseTool, InvocationContext, PermissionLevel, ToolResult, text_arg

logger = logging.getLogger(__name__)

_ACTIONS = ("generate_flex", "send_flex", "generate_quickreply")
DEFAULT_ALT_TEXT = "MyClaw message"
MAX_CAROUSEL_CARDS = 12
MAX_QUICK_REPLIES = 13
QUICK_REPLY_LABEL_MAX = 20


def _text(value: Any, **style: Any) -> dict[str, Any]:
    return {"type": "text", "text": str(value), **style}


def _uri_footer(label: Any, uri: Any) -> dict[str, Any]:
    return {
        "type": "box",
        "layout": "vertical",
        "contents": [
            {
                "type": "button",
                "action": {"type": "uri", "label": str(label), "uri": str(uri)},
                "style": "primary",
            }
        ],
    }


def _hero(url: Any) -> dict[str, Any]:
    return {
        "type": "image",
        "url": str(url),
        "size": "full",
        "aspectRatio": "20:13",
        "aspectMode": "cover",
    }


def _info(data: dict[str, Any]) -> dict[str, Any]:
    bubble: dict[str, Any] = {
        "type": "bubble",
        "body": {
            "type": "box",
            "layout": "vertical",
            "contents": [
                _text(data.get("title") or "Info", weight="bold", size="xl"),
                _text(data.get("text") or "", wrap=True, margin="md", size="sm", color="#666666"),
            ],
        },
    }
    if data.get("buttonLabel") and data.get("buttonUrl"):
        bubble["footer"] = _uri_footer(data["buttonLabel"], data["buttonUrl"])
    return bubble


def _image(data: dict[str, Any]) -> dict[str, Any]:
    contents = []
    if data.get("title"):
        contents.append(_text(data["title"], weight="bold", size="xl"))
    if data.get("description"):
        contents.append(
            _text(data["description"], wrap=True, margin="md", size="sm", color="#666666")
        )
    return {
        "type": "bubble",
        "hero": _hero(data.get("imageUrl") or ""),
        "body": {"type": "box", "layout": "vertical", "contents": contents},
    }


def _list(data: dict[str, Any]) -> dict[str, Any]:
    items = data.get("items") if isinstance(data.get("items"), list) else []
    contents: list[dict[str, Any]] = []
    if data.get("title"):
        contents.append(_text(data["title"], weight="bold", size="lg", margin="none"))
    contents.append({"type": "separator", "margin": "md"})
    for item in items:
        item = item if isinstance(item, dict) else {}
        contents.append(
            {
                "type": "box",
                "layout": "horizontal",
                "margin": "md",
                "contents": [
                    _text(item.get("label") or "", size="sm", color="#555555", flex=0),
                    _text(item.get("value") or "", size="sm", color="#111111", align="end"),
                ],
            }
        )
    return {
        "type": "bubble",
        "body": {"type": "box", "layout": "vertical", "contents": contents},
    }


def _confirm(data: dict[str, Any]) -> dict[str, Any]:
    def button(label: Any, text: Any, style: str) -> dict[str, Any]:
        return {
            "type": "button",
            "action": {"type": "message", "label": str(label), "text": str(text)},
            "style": style,
            "flex": 1,
        }

    return {
        "type": "bubble",
        "body": {
            "type": "box",
            "layout": "vertical",
            "contents": [_text(data.get("text") or "Confirm?", wrap=True, size="md")],
        },
        "footer": {
            "type": "box",
            "layout": "horizontal",
            "spacing": "sm",
            "contents": [
                button(data.get("yesLabel") or "Yes", data.get("yesText") or "Yes", "primary"),
                button(data.get("noLabel") or "No", data.get("noText") or "No", "secondary"),
            ],
        },
    }


def _carousel(data: dict[str, Any]) -> dict[str, Any]:
    cards = data.get("cards") if isinstance(data.get("cards"), list) else []
    bubbles = []
    for card in cards[:MAX_CAROUSEL_CARDS]:
        card = card if isinstance(card, dict) else {}
        body = [_text(card.get("title") or "", weight="bold", size="md")]
        if card.get("description"):
            body.append(
                _text(card["description"], wrap=True, size="sm", color="#666666", margin="sm")
            )
        bubble: dict[str, Any] = {"type": "bubble"}
        if card.get("imageUrl"):
            bubble["hero"] = _hero(card["imageUrl"])
        bubble["body"] = {"type": "box", "layout": "vertical", "contents": body}
        if card.get("buttonLabel") and card.get("buttonUrl"):
            bubble["footer"] = _uri_footer(card["buttonLabel"], card["buttonUrl"])
        bubbles.append(bubble)
    return {"type": "carousel", "contents": bubbles}


TEMPLATES: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    "info": _info,
    "image": _image,
    "list": _list,
    "confirm": _confirm,
    "carousel": _carousel,
}


def build_quick_reply(items: list[Any]) -> dict[str, Any]:
    """Quick Reply payload: uri actions for items with ``uri``, message actions otherwise."""
    actions = []
    for item in items[:MAX_QUICK_REPLIES]:
        item = item if isinstance(item, dict) else {}
        label = str(item.get("label") or "")[:QUICK_REPLY_LABEL_MAX]
        if item.get("uri"):
            action = {"type": "uri", "label": label, "uri": str(item["uri"])}
        else:
            action = {
                "type": "message",
                "label": label,
                "text": str(item.get("text") or item.get("label") or ""),
            }
        actions.append({"type": "action", "action": action})
    return {"items": actions}


class CanvasTool(BaseTool):
    """Rich LINE cards from templates or raw Flex JSON."""

    @property
    def name(self) -> str:
        return "canvas"

    @property
    def description(self) -> str:
        return (
            "Create and send rich LINE Flex Messages (cards, lists, carousels, confirm "
            'dialogs). Actions: "generate_flex" builds the Flex JSON from a template and '
            'data for inspection, "send_flex" builds and sends it to the user, '
            '"generate_quickreply" builds Quick Reply buttons. Templates: info '
            "(title+text+button), image (image+title+desc), list (key-value pairs), "
            "confirm (yes/no), carousel (multiple cards). rawFlex gives full control."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": list(_ACTIONS),
                    "description": "Action to perform.",
                },
                "template": {
                    "type": "string",
                    "enum": list(TEMPLATES),
                    "description": "Template to use (generate_flex/send_flex).",
                },
                "data": {
                    "type": "object",
                    "description": (
                        "Template data. info: {title, text, buttonLabel?, buttonUrl?}; "
                        "image: {imageUrl, title?, description?}; "
                        "list: {title?, items: [{label, value}]}; "
                        "confirm: {text, yesLabel?, yesText?, noLabel?, noText?}; "
                        "carousel: {cards: [{title, description?, imageUrl?, buttonLabel?, buttonUrl?}]}"
                    ),
                },
                "rawFlex": {
                    "type": "object",
                    "description": "Raw Flex container JSON (bubble or carousel); overrides template.",
                },
                "altText": {
                    "type": "string",
                    "description": "Notification / fallback text.",
                },
                "quickReplies": {
                    "type": "array",
                    "description": "Quick reply items: [{label, text}] or [{label, uri}].",
                    "items": {
                        "type": "object",
                        "properties": {
                            "label": {"type": "string"},
                            "text": {"type": "string"},
                            "uri": {"type": "string"},
                        },
                    },
                },
            },
            "required": ["action"],
        }

    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.SAFE

    async def execute(self, params: dict[str, Any], context: InvocationContext) -> ToolResult:
        action = text_arg(params, "action")

        if action == "generate_quickreply":
            items = params.get("quickReplies")
            if not isinstance(items, list) or not items:
                return ToolResult.fail("empty_items", "quickReplies array is required.")
            return ToolResult.ok(
                action=action,
                quickReply=build_quick_reply(items),
                note="Attach this quickReply to any message to show quick reply buttons.",
            )

        if action not in ("generate_flex", "send_flex"):
            return ToolResult.fail(
                "unknown_action",
                f'Unknown action "{action}". Available: {", ".join(_ACTIONS)}.',
            )

        raw = params.get("rawFlex")
        if isinstance(raw, dict) and raw:
            contents = raw
        else:
            template = text_arg(params, "template")
            if template not in TEMPLATES:
                return ToolResult.fail(
                    "invalid_template",
                    f'Template "{template}" not found. Available: {", ".join(TEMPLATES)}',
                )
            data = params.get("data") if isinstance(params.get("data"), dict) else {}
            contents = TEMPLATES[template](data)

        alt_text = text_arg(params, "altText") or DEFAULT_ALT_TEXT
        flex_message = {"type": "flex", "altText": alt_text, "contents": contents}

        if action == "generate_flex":
            return ToolResult.ok(
                action=action,
                flexMessage=flex_message,
                note='Use "send_flex" to send this to the user.',
            )

        if context.notifier is None:
            return ToolResult.fail("no_client", "Messaging client not available.")
        if not context.caller_id:
            return ToolResult.fail("no_user", "No userId available for sending.")
        try:
            await context.notifier.push_flex(context.caller_id, alt_text, contents)
        except NotifierError as e:
            logger.error(f"[canvas] send_flex failed: {e}")
            return ToolResult.fail("action_failed", str(e), action=action)
        logger.info(f"[canvas] Sent flex message to {context.caller_id}")
        return ToolResult.ok(action=action, to=context.caller_id, altText=alt_text)
