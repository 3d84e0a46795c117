"""Orchestration engine.

``ChannelBridge`` is the entry point for message-channel integrations that
feed the engine from a queue instead of over HTTP.
"""

from switchboard.core.channel import (
    ChannelBridge,
    InboundMessage,
    MessageKind,
    OutboundMessage,
    default_request_factory,
)

__all__ = [
    "ChannelBridge",
    "InboundMessage",
    "MessageKind",
    "OutboundMessage",
    "default_request_factory",
]
