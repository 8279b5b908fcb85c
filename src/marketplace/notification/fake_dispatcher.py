"""Recording dispatcher — keeps notices in memory for tests and development."""

from marketplace.notification.port import NotificationDispatcher


class RecordingDispatcher(NotificationDispatcher):
    """Records each distinct notice once, the way an idempotent receiver would."""

    def __init__(self):
        self.sent: list[dict] = []
        self.duplicates = 0
        self.should_succeed = True
        self._seen: set[str] = set()

    def configure(self, should_succeed: bool = True):
        self.should_succeed = should_succeed

    def notify(self, kind: str, payload: dict, idempotency_key: str) -> bool:
        if not self.should_succeed:
            return False
        if idempotency_key in self._seen:
            self.duplicates += 1
            return True
        self._seen.add(idempotency_key)
        self.sent.append({"kind": kind, "payload": payload, "idempotency_key": idempotency_key})
        return True

    def of_kind(self, kind: str) -> list[dict]:
        return [notice for notice in self.sent if notice["kind"] == kind]

