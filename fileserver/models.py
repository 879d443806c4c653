from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class Request:
    method: str
    target: str
    path: str
    version: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass(frozen=True)
class ResponseSpec:
    status: int
    reason: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    body_path: Optional[str] = None
    body_size: int = 0

    @property
    def content_length(self) -> int:
        if self.body_path is not None:
            return self.body_size
        return len(self.body)
