"""
Per-operation parsing context attached to cancellation tokens.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from crawler.workers.cancellation import CancellationToken

PARSING_CONTEXT_KEY = "parsing_context"


@dataclass
class ParsingContext:
    """
    What is being crawled right now: source, entity and URL.
    """

    source: str
    domain: str
    entity_type: str
    entity_id: str
    url: str
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: float = field(default_factory=time.monotonic)
    metadata: dict[str, Any] = field(default_factory=dict)

    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)

    def with_metadata(self, **values: Any) -> ParsingContext:
        self.metadata.update(values)
        return self

    def to_log_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "source": self.source,
            "domain": self.domain,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "url": self.url,
            "session_id": self.session_id,
            "duration_ms": self.duration_ms(),
        }
        if self.metadata:
            fields["metadata"] = self.metadata
        return fields


def with_parsing_context(token: CancellationToken, context: ParsingContext) -> CancellationToken:
    return token.child(**{PARSING_CONTEXT_KEY: context})


def parsing_context_from(token: CancellationToken | None) -> ParsingContext | None:
    if token is None:
        return None
    context = token.value(PARSING_CONTEXT_KEY)
    return context if isinstance(context, ParsingContext) else None
