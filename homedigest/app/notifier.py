import asyncio
import json
import logging
import time
from typing import Any, Dict

import aiohttp

from homedigest.api import db
from homedigest.app.config import load_config

logger = logging.getLogger("homedigest.notifier")

DEFAULT_SERVICE = "persistent_notification.create"


def configured_service() -> str:
    """Notify target from settings, resolved on every send."""
    return load_config().get("notification_service") or DEFAULT_SERVICE


def _split_service(service: str) -> tuple[str, str]:
    # "notify.mobile_app_phone" or a bare "mobile_app_phone" under notify
    if "." in service:
        domain, name = service.split(".", 1)
        return domain, name
    return "notify", service


def render_digest_message(digest: Dict[str, Any], full: bool) -> str:
    """Short summary for push services; summary plus attention titles for persistent notifications."""
    summary = digest.get("summary") or ""
    if not full:
        return summary
    try:
        content = json.loads(digest.get("content") or "{}")
    except ValueError:
        return summary
    lines = [summary]
    items = content.get("attention_items") if isinstance(content, dict) else None
    if isinstance(items, list) and items:
        lines.append("")
        lines += [f"- **{i.get('title', '')}**: {i.get('description', '')}" for i in items if isinstance(i, dict)]
    tip = content.get("tip") if isinstance(content, dict) else None
    if isinstance(tip, dict) and tip.get("title"):
        lines += ["", f"💡 {tip['title']}: {tip.get('action', '')}"]
    return "\n".join(lines)


async def send_notification(ha, title: str, message: str, *, notification_id: str | None = None,
                            data: Dict[str, Any] | None = None, service: str | None = None) -> Dict[str, Any]:
    domain, name = _split_service(service or configured_service())
    payload: Dict[str, Any] = {"title": title, "message": message}
    if domain == "persistent_notification":
        payload["notification_id"] = notification_id or f"homedigest_{int(time.time() * 1000)}"
    elif data:
        payload["data"] = data

    try:
        await ha.call_service(domain, name, payload)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.error("Failed to send notification via %s.%s: %s", domain, name, e)
        return {"success": False, "service": f"{domain}.{name}", "error": str(e)}

    logger.info("Notification sent via %s.%s", domain, name)
    return {"success": True, "service": f"{domain}.{name}"}


async def send_digest_notification(ha, digest: Dict[str, Any]) -> Dict[str, Any]:
    """Notify about a stored digest; flips notification_sent only on success."""
    count = int(digest.get("attention_count") or 0)
    title = "🏠 Home Digest - " + (f"{count} items need attention" if count > 0 else "All systems normal")
    service = configured_service()
    result = await send_notification(
        ha,
        title,
        render_digest_message(digest, full="persistent_notification" in service),
        notification_id=f"homedigest_{digest['id']}",
        data={"tag": "homedigest", "importance": "high" if count > 0 else "default"},
        service=service,
    )
    if result["success"]:
        db.mark_notification_sent(digest["id"])
    return result


async def send_test_notification(ha) -> Dict[str, Any]:
    return await send_notification(
        ha,
        "🧪 Home Digest Test",
        "If you see this, notifications are working correctly!",
        notification_id="homedigest_test",
    )
