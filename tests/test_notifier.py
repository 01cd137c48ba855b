"""
Tests for notification delivery through Home Assistant services.
"""

import asyncio
import json

from homedigest.api import db
from homedigest.app import notifier
from homedigest.app.config import save_config


def _digest(attention_items, summary="Two things need a look."):
    content = {"summary": summary, "attention_items": attention_items,
               "tip": {"title": "Check filters", "action": "HVAC filter is 3 months old."}}
    digest_id = db.add_digest("daily", json.dumps(content), summary, len(attention_items))
    return {"id": digest_id, "content": json.dumps(content), "summary": summary,
            "attention_count": len(attention_items)}


class TestSendNotification:

    async def test_notify_service_gets_data_not_notification_id(self, ha):
        result = await notifier.send_notification(ha, "T", "M", notification_id="x", data={"tag": "t"},
                                                  service="notify.mobile_app_phone")
        assert result == {"success": True, "service": "notify.mobile_app_phone"}
        ha.call_service.assert_awaited_once_with("notify", "mobile_app_phone",
                                                 {"title": "T", "message": "M", "data": {"tag": "t"}})

    async def test_bare_service_name_goes_to_notify(self, ha):
        await notifier.send_notification(ha, "T", "M", service="mobile_app_phone")
        assert ha.call_service.await_args.args[:2] == ("notify", "mobile_app_phone")

    async def test_timeout_reported_not_raised(self, ha):
        ha.call_service.side_effect = asyncio.TimeoutError()
        result = await notifier.send_notification(ha, "T", "M")
        assert result["success"] is False


class TestDigestNotification:

    async def test_persistent_notification_lists_attention_items(self, ha):
        digest = _digest([{"title": "Door battery", "description": "12% left"},
                          {"title": "Zigbee", "description": "setup error"}])
        result = await notifier.send_digest_notification(ha, digest)

        assert result["success"]
        payload = ha.call_service.await_args.args[2]
        assert payload["title"] == "🏠 Home Digest - 2 items need attention"
        assert payload["notification_id"] == f"homedigest_{digest['id']}"
        assert "- **Door battery**: 12% left" in payload["message"]
        assert "💡 Check filters" in payload["message"]
        assert db.get_digest(digest["id"])["notification_sent"] == 1

    async def test_all_clear_title(self, ha):
        await notifier.send_digest_notification(ha, _digest([], summary="Quiet day."))
        assert ha.call_service.await_args.args[2]["title"] == "🏠 Home Digest - All systems normal"

    def test_push_message_is_summary_only(self):
        digest = {"summary": "S", "content": json.dumps({"attention_items": [{"title": "x"}]})}
        assert notifier.render_digest_message(digest, full=False) == "S"
        assert notifier.render_digest_message({"summary": "S", "content": "oops"}, full=True) == "S"

    async def test_target_follows_saved_settings(self, ha):
        save_config({"notification_service": "notify.mobile_app_phone"})
        digest = _digest([{"title": "Door battery", "description": "12% left"}])

        result = await notifier.send_digest_notification(ha, digest)

        domain, service, payload = ha.call_service.await_args.args
        assert (domain, service) == ("notify", "mobile_app_phone")
        assert result["service"] == "notify.mobile_app_phone"
        assert payload["message"] == digest["summary"]
        assert payload["data"]["importance"] == "high"
