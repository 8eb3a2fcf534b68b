# scripts/register_webhook.py
"""Регистрация подписки на вебхуки POS"""
import asyncio
import sys
from shopsync.core.config import settings
from shopsync.core.exceptions import SyncError
from shopsync.services.pos_client import PosClient

async def register():
    if not settings.POS_WEBHOOK_NOTIFICATION_URL:
        print("❌ POS_WEBHOOK_NOTIFICATION_URL is not set")
        return False

    async with PosClient(
        base_url=settings.POS_BASE_URL,
        access_token=settings.POS_ACCESS_TOKEN,
        refresh_token=settings.POS_REFRESH_TOKEN,
        client_id=settings.POS_CLIENT_ID,
        client_secret=settings.POS_CLIENT_SECRET,
        api_version=settings.POS_API_VERSION
    ) as pos:
        try:
            subscription = await pos.register_webhook(
                settings.POS_WEBHOOK_NOTIFICATION_URL,
                settings.WEBHOOK_EVENT_TYPES
            )
        except SyncError as e:
            print(f"❌ Registration failed: {e}")
            return False

    print(f"✅ Subscription {subscription.get('id')} for {', '.join(settings.WEBHOOK_EVENT_TYPES)}")
    if subscription.get("signature_key"):
        print("   Set POS_WEBHOOK_SIGNATURE_KEY to the returned signature key")
    return True

if __name__ == "__main__":
    if not asyncio.run(register()):
        sys.exit(1)
