import asyncio
import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from app.core.config import settings
from app.modules.messaging.errors import WebhookVerificationError
from app.platform.ports.channel_sender import ChannelSenderPort, SendResult, WebhookRequest, DeliveryEvent, EVENT_STATUS

log = logging.getLogger("sender.fcm")

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
RECEIPT_EVENTS = {"delivered", "opened", "clicked"}

class FcmPushSender(ChannelSenderPort):
    """FCM HTTP v1; one request per device token, success when any token accepts.

    Access tokens are minted from service-account credentials and refreshed when they expire.
    """
    provider = "fcm"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None, credentials: Any = None):
        if credentials is None:
            if not settings.FCM_CREDENTIALS_FILE:
                raise RuntimeError("FCM_CREDENTIALS_FILE must be configured")
            credentials = service_account.Credentials.from_service_account_file(
                settings.FCM_CREDENTIALS_FILE, scopes=[FCM_SCOPE]
            )
        self.credentials = credentials
        self.project_id = settings.FCM_PROJECT_ID or getattr(credentials, "project_id", None)
        if not self.project_id:
            raise RuntimeError("FCM_PROJECT_ID must be configured or present in the service account file")
        self._transport = transport
        self._token_lock = asyncio.Lock()

    async def _access_token(self) -> str:
        async with self._token_lock:
            if not self.credentials.valid:
                # google-auth refresh is a blocking HTTP call
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self.credentials.refresh, GoogleAuthRequest())
                log.info(f"Refreshed FCM access token for project {self.project_id}")
            return self.credentials.token

    def _message(self, token: str, content: Any, options: dict) -> dict:
        data = {k: str(v) for k, v in (content.data or {}).items()}
        if content.deep_link:
            data["deep_link"] = content.deep_link
        if options.get("delivery_id"):
            data["delivery_id"] = options["delivery_id"]
        notification = {"title": content.title, "body": content.body}
        if content.image:
            notification["image"] = content.image
        android = {k: v for k, v in {"icon": content.icon, "sound": content.sound, "click_action": content.click_action}.items() if v}
        aps = {k: v for k, v in {"badge": content.badge, "sound": content.sound}.items() if v is not None}
        msg = {"token": token, "notification": notification, "data": data}
        if android:
            msg["android"] = {"notification": android}
        if aps:
            msg["apns"] = {"payload": {"aps": aps}}
        return {"message": msg}

    async def _send_one(self, client: httpx.AsyncClient, token: str, body: dict) -> SendResult:
        try:
            resp = await client.post(f"/v1/projects/{self.project_id}/messages:send", json=body)
        except httpx.RequestError as e:
            return SendResult(success=False, error=f"fcm request failed: {e}")
        if resp.status_code >= 400:
            err = (resp.json().get("error") or {}) if resp.content else {}
            log.warning(f"FCM rejected token {token[:12]}...: {resp.status_code} {err.get('status')}")
            return SendResult(success=False, error=f"fcm {resp.status_code}: {err.get('message', '')}")
        name = resp.json().get("name", "")
        return SendResult(success=True, provider_message_id=name.rsplit("/", 1)[-1] or None)

    async def send(self, destination: Any, content: Any, options: dict | None = None) -> SendResult:
        tokens = list(destination or [])
        if not tokens:
            return SendResult(success=False, error="no push tokens")
        try:
            token = await self._access_token()
        except GoogleAuthError as e:
            log.error(f"FCM credentials refresh failed for project {self.project_id}: {e}")
            return SendResult(success=False, error=f"fcm auth failed: {e}")
        async with httpx.AsyncClient(
            base_url=settings.FCM_BASE_URL,
            headers={"Authorization": f"Bearer {token}"},
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            transport=self._transport,
        ) as client:
            results = await asyncio.gather(*[self._send_one(client, t, self._message(t, content, options or {})) for t in tokens])
        ok = [r for r in results if r.success]
        if ok:
            return ok[0]
        return SendResult(success=False, error=results[0].error)

    def verify(self, request: WebhookRequest) -> None:
        secret = settings.PUSH_WEBHOOK_SECRET
        if not secret:
            raise WebhookVerificationError("PUSH_WEBHOOK_SECRET not configured")
        provided = request.headers.get("x-push-signature", "")
        expected = hmac.new(secret.encode(), request.body, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(expected, provided):
            raise WebhookVerificationError("invalid push receipt signature")

    async def handle_webhook(self, request: WebhookRequest) -> list[DeliveryEvent]:
        self.verify(request)
        payload = request.payload or (json.loads(request.body) if request.body else {})
        event = str(payload.get("event", "")).lower()
        if event not in RECEIPT_EVENTS or not payload.get("message_id"):
            return []
        ts = payload.get("timestamp")
        when = datetime.fromtimestamp(float(ts), tz=timezone.utc) if ts else datetime.now(timezone.utc)
        return [DeliveryEvent(message_id=str(payload["message_id"]), event=event, status=EVENT_STATUS[event], timestamp=when)]
