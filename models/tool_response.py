from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolResponse:
    """
    Payload returned to the host for one tool invocation.

    text is what the agent reads; details is side-channel metadata for
    renderers and logs. is_error marks a hard failure (nothing usable).
    """

    text: str
    details: dict[str, Any] = field(default_factory=dict)
    is_error: bool = False

    @property
    def is_success(self) -> bool:
        return not self.is_error

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": [{"type": "text", "text": self.text}],
            "details": self.details,
            "isError": self.is_error,
        }
