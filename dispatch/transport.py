"""
DISPATCH App - Channel layer transport

Delivers outbound frames to individual WebSocket connections through the
Django Channels layer. A connection handle is the consumer's channel name;
the consumer relays `outbound.frame` messages to its socket.
"""

import logging

logger = logging.getLogger(__name__)


def get_channel_layer():
    """Get the Django Channels layer (lazy import)."""
    from channels.layers import get_channel_layer as _get_channel_layer
    return _get_channel_layer()


class ChannelLayerTransport:
    """
    Registry transport backed by `channel_layer.send`.

    Sends only enqueue onto the layer, so a slow socket never holds up the
    sender; a full channel raises `ChannelFull`, which the registry catches
    per recipient.
    """

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    async def send(self, handle: str, message: dict) -> None:
        await self.channel_layer.send(handle, {
            'type': 'outbound.frame',
            'frame': message,
        })

    async def close(self, handle: str, code: int = 4001) -> None:
        await self.channel_layer.send(handle, {
            'type': 'outbound.close',
            'code': code,
        })
