"""In-memory Gmail API and webhook receiver for tests, served through httpx.MockTransport."""

import json

import httpx

APP_URL = "http://app.test"


class FakeGmail:
    """Serves the Gmail endpoints the connector uses and records webhook deliveries.

    Messages are stored newest first, mirroring Gmail's search ordering.
    """

    def __init__(self) -> None:
        self.messages: dict[str, dict] = {}
        self.search_ids: list[str] = []
        self.history: list[str] = []
        self.history_id = "9000"
        self.history_status = 200
        self.search_status = 200
        self.auth_status = 200
        self.webhook_status: dict[str, int] = {}
        self.deliveries: list[dict] = []
        self.modified: list[str] = []
        self.requests: list[httpx.Request] = []

    def add_message(
        self,
        message_id: str,
        labels: list[str] | None = None,
        history_id: str | None = None,
        in_history: bool = True,
    ) -> None:
        self.messages[message_id] = {
            "id": message_id,
            "threadId": f"t-{message_id}",
            "labelIds": labels or ["INBOX", "UNREAD"],
            "historyId": history_id or message_id,
            "snippet": f"Message {message_id}",
        }
        self.search_ids.insert(0, message_id)
        if in_history:
            self.history.append(message_id)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "app.test":
            return self._webhook(request)
        if self.auth_status != 200:
            return httpx.Response(self.auth_status, json={"error": "unauthorized"})

        path = request.url.path.split("/users/me/", 1)[1]
        if path == "history":
            if self.history_status != 200:
                return httpx.Response(self.history_status, json={"error": "history gone"})
            records = [{"messagesAdded": [{"message": {"id": m}}]} for m in self.history]
            return httpx.Response(200, json={"history": records, "historyId": self.history_id})
        if path == "messages":
            if self.search_status != 200:
                return httpx.Response(self.search_status, json={"error": "search failed"})
            limit = int(request.url.params.get("maxResults", 100))
            ids = self.search_ids[:limit]
            return httpx.Response(200, json={"messages": [{"id": m} for m in ids]})
        if path.endswith("/modify"):
            self.modified.append(path.split("/")[1])
            return httpx.Response(200, json={})
        message_id = path.split("/")[1]
        if message_id not in self.messages:
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(200, json=self.messages[message_id])

    def _webhook(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        path = request.url.path.rsplit("/", 1)[1]
        self.deliveries.append(
            {
                "path": path,
                "secret": request.headers.get("X-Webhook-Secret"),
                "email_id": body["email"]["id"],
                "timestamp": body["timestamp"],
            }
        )
        status = self.webhook_status.get(body["email"]["id"], 200)
        return httpx.Response(status, json={"ok": status == 200})
