"""Client-side chat transport for device-local models."""

from localchat.transport import ChatResponse, ClientSideChatTransport

__all__ = ["ChatResponse", "ClientSideChatTransport"]
