"""Queue-based bridge between a messaging connector and the Orchestrator.

The connector puts InboundMessages on a bounded inbound queue and reads
OutboundMessages (typing indicator, reply or error) from a bounded
outbound queue. The bridge never calls back into the connector.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from switchboard.core.error_types import ErrorKind
from switchboard.core.exceptions import OrchestrationError
from switchboard.core.models import RequestSpec

if TYPE_CHECKING:
    from switchboard.core.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class MessageKind(str, Enum):
    TYPING = "typing"
    REPLY = "reply"
    ERROR = "error"


@dataclass(frozen=True)
class InboundMessage:
    conversation_id: str
    text: str
    user_id: str | None = None
    tenant_id: str | None = None
    message_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class OutboundMessage:
    conversation_id: str
    kind: MessageKind
    text: str = ""
    in_reply_to: str | None = None
    error_kind: ErrorKind | None = None


RequestFactory = Callable[[InboundMessage], RequestSpec]


def default_request_factory(message: InboundMessage) -> RequestSpec:
    return RequestSpec(
        prompt=message.text,
        user_id=message.user_id,
        tenant_id=message.tenant_id,
        endpoint="channel",
    )


class ChannelBridge:
    """Consumes inbound messages with a fixed pool of worker tasks."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        request_factory: RequestFactory = default_request_factory,
        inbound_maxsize: int = 100,
        outbound_maxsize: int = 100,
        workers: int = 1,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.orchestrator = orchestrator
        self.request_factory = request_factory
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue(maxsize=inbound_maxsize)
        self.outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue(maxsize=outbound_maxsize)
        self.workers = workers
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def submit(self, message: InboundMessage) -> None:
        """Enqueue ``message``, waiting while the inbound queue is full."""
        await self.inbound.put(message)

    def submit_nowait(self, message: InboundMessage) -> None:
        """Enqueue ``message`` or raise asyncio.QueueFull."""
        self.inbound.put_nowait(message)

    async def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._worker(), name=f"channel-worker-{index}")
            for index in range(self.workers)
        ]
        logger.info(f"📨 Channel bridge started with {self.workers} worker(s)")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("📨 Channel bridge stopped")

    async def join(self) -> None:
        """Wait until every submitted message has been handled."""
        await self.inbound.join()

    async def _worker(self) -> None:
        while True:
            message = await self.inbound.get()
            try:
                await self.handle(message)
            finally:
                self.inbound.task_done()

    async def handle(self, message: InboundMessage) -> None:
        """Answer one message: a typing signal, then a reply or an error."""
        await self.outbound.put(
            OutboundMessage(
                conversation_id=message.conversation_id,
                kind=MessageKind.TYPING,
                in_reply_to=message.message_id,
            )
        )
        try:
            result = await self.orchestrator.complete(self.request_factory(message))
        except OrchestrationError as e:
            logger.warning(f"Reply to {message.conversation_id} failed: {e}")
            reply = OutboundMessage(
                conversation_id=message.conversation_id,
                kind=MessageKind.ERROR,
                text=e.user_message,
                in_reply_to=message.message_id,
                error_kind=e.kind,
            )
        except Exception:
            logger.exception(f"Unexpected error answering {message.conversation_id}")
            reply = OutboundMessage(
                conversation_id=message.conversation_id,
                kind=MessageKind.ERROR,
                text=OrchestrationError.user_message,
                in_reply_to=message.message_id,
                error_kind=ErrorKind.UNEXPECTED,
            )
        else:
            reply = OutboundMessage(
                conversation_id=message.conversation_id,
                kind=MessageKind.REPLY,
                text=result.text,
                in_reply_to=message.message_id,
            )
        await self.outbound.put(reply)
