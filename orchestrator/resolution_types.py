from dataclasses import dataclass
from enum import Enum

from models.content import ExtractedContent


class ResolutionStatus(str, Enum):
    MATCHED_SUCCESS = "matched_success"
    MATCHED_FAILURE = "matched_failure"
    NOT_MATCHED = "not_matched"


@dataclass(frozen=True)
class Resolution:
    status: ResolutionStatus
    content: ExtractedContent | None = None
    resolver: str = ""

    @property
    def matched(self) -> bool:
        return self.status != ResolutionStatus.NOT_MATCHED

    @classmethod
    def not_matched(cls, resolver: str = "") -> "Resolution":
        return cls(status=ResolutionStatus.NOT_MATCHED, content=None, resolver=resolver)

    @classmethod
    def from_content(cls, content: ExtractedContent, resolver: str = "") -> "Resolution":
        status = ResolutionStatus.MATCHED_SUCCESS if content.ok else ResolutionStatus.MATCHED_FAILURE
        return cls(status=status, content=content, resolver=resolver)
