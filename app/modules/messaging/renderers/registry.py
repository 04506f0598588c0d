from app.modules.messaging.renderers.base import ChannelRenderer
from app.modules.messaging.renderers.email import EmailRenderer
from app.modules.messaging.renderers.push import PushRenderer
from app.modules.messaging.renderers.whatsapp import WhatsAppRenderer
from app.modules.messaging.renderers.inapp import InAppRenderer
from app.modules.messaging.renderers.sms import SmsRenderer

RENDERERS: dict[str, ChannelRenderer] = {
    r.channel: r for r in (EmailRenderer(), PushRenderer(), WhatsAppRenderer(), InAppRenderer(), SmsRenderer())
}

def get_renderer(channel: str) -> ChannelRenderer:
    try:
        return RENDERERS[channel]
    except KeyError:
        raise ValueError(f"No renderer for channel {channel}")
