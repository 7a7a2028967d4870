from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Notification:
    user_id: str
    type: str  # achievement|course_update
    title: str
    message: str
    data: dict[str, str] = field(default_factory=dict)
    priority: str = "normal"  # low|normal|high

    def to_payload(self) -> dict:
        return {
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "data": dict(self.data),
            "priority": self.priority,
        }
