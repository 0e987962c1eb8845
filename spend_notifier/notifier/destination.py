"""Spend Notifier — Publish Destination Interface.

The dispatcher publishes one multi-part request to a pub/sub topic. The
topic fans the request out to its subscribed protocols, picking the
per-protocol override when one exists and the default body otherwise.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Protocol

TOPIC_ARN_PATTERN = re.compile(r"^arn:aws:sns:[a-z0-9-]+:\d{12}:[a-zA-Z0-9_-]+$")


def is_valid_topic_arn(arn: str) -> bool:
    return bool(arn) and TOPIC_ARN_PATTERN.match(arn) is not None


@dataclass(frozen=True)
class PublishRequest:
    """A multi-protocol publish.

    Attributes:
        topic_arn: Destination topic.
        default_message: Body for protocols without an override.
        overrides: Protocol key ("email", "sms", "APNS", ...) → body.
        subject: Subject line for protocols that support one.
        attributes: String message attributes.
    """

    topic_arn: str
    default_message: str
    overrides: dict[str, str] = field(default_factory=dict)
    subject: str = ""
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def protocols(self) -> tuple[str, ...]:
        return tuple(self.overrides)

    def to_message(self) -> str:
        """Wire form: plain body, or a JSON protocol map when overrides exist."""
        if not self.overrides:
            return self.default_message
        return json.dumps(
            {"default": self.default_message, **self.overrides},
            ensure_ascii=False,
        )

    @property
    def size(self) -> int:
        """Encoded payload size in bytes."""
        return len(self.to_message().encode("utf-8"))

    def without(self, protocol: str) -> "PublishRequest":
        """Copy of this request with one protocol override removed."""
        return PublishRequest(
            topic_arn=self.topic_arn,
            default_message=self.default_message,
            overrides={k: v for k, v in self.overrides.items() if k != protocol},
            subject=self.subject,
            attributes=dict(self.attributes),
        )


class PublishDestination(Protocol):
    """Multi-protocol topic client.

    Implementations raise on failure; errors should carry a service
    ``error_code`` and/or ``status_code`` (see TransportError) so the
    retrier can classify them.
    """

    async def publish(self, request: PublishRequest) -> str:
        """Publish the request and return the destination message id."""
        ...
