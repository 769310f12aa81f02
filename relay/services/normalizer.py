"""Turn inbound webhook bodies into a canonical (sender, text) message.

Two body shapes arrive from the messaging platform:

* flat: ``{"event": ..., "phone": "5511...", "message": "text"}``
* nested: ``{"event": ..., "data": {"messages": {"key": {...}, "remoteJid": ...,
  "message": {<content sub-message>}}}}``

The content sub-message is matched against an ordered list of known variants;
anything else becomes UNSUPPORTED (or CONTROL for key-distribution and other
protocol-only messages).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from relay.logging_config import get_logger, preview
from relay.services.result import Result

logger = get_logger("normalizer")

ACCEPTED_EVENTS = {"messages.upsert", "messages.received", "message", "message.received", "message.upsert"}
CHANNEL_NATIVE_DOMAINS = {"lid", "g.us", "newsletter", "broadcast"}
GROUP_DOMAIN = "g.us"
CONTROL_KEYS = ("senderKeyDistributionMessage", "protocolMessage", "messageContextInfo", "reactionMessage")

DEFAULT_SENDER_NAME = "Cliente"
UNSUPPORTED_TEXT = "[mídia não suportada]"
IMAGE_TAG = "[Imagem]"
VIDEO_TAG = "[Vídeo]"
AUDIO_TAG = "[Áudio]"
DOCUMENT_TAG = "[Documento]"
STICKER_TAG = "[Figurinha]"


class ContentKind(str, Enum):
    TEXT = "text"
    EXTENDED_TEXT = "extended_text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    CONTROL = "control"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class CanonicalMessage:
    sender: str
    text: str
    kind: ContentKind = ContentKind.TEXT
    sender_name: str = DEFAULT_SENDER_NAME
    message_id: Optional[str] = None
    is_processable: bool = True


def _clean_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _sub(message: dict, key: str) -> Optional[dict]:
    value = message.get(key)
    return value if isinstance(value, dict) else None


def _tagged(tag: str, detail: Optional[str]) -> str:
    return f"{tag} {detail}" if detail else tag


def _plain_text(message: dict) -> Optional[str]:
    return _clean_str(message.get("conversation"))


def _extended_text(message: dict) -> Optional[str]:
    sub = _sub(message, "extendedTextMessage")
    return _clean_str(sub.get("text")) if sub else None


def _captioned(key: str, tag: str) -> Callable[[dict], Optional[str]]:
    def resolve(message: dict) -> Optional[str]:
        sub = _sub(message, key)
        caption = _clean_str(sub.get("caption")) if sub else None
        return _tagged(tag, caption) if caption else None

    return resolve


def _marker(key: str, tag: str) -> Callable[[dict], Optional[str]]:
    def resolve(message: dict) -> Optional[str]:
        return tag if key in message and message.get(key) is not None else None

    return resolve


def _document(message: dict) -> Optional[str]:
    sub = _sub(message, "documentMessage")
    if sub is None:
        return None
    title = _clean_str(sub.get("title")) or _clean_str(sub.get("fileName"))
    return _tagged(DOCUMENT_TAG, title)


# Order matters: the first resolver that yields text wins.
CONTENT_RESOLVERS: tuple[tuple[ContentKind, Callable[[dict], Optional[str]]], ...] = (
    (ContentKind.TEXT, _plain_text),
    (ContentKind.EXTENDED_TEXT, _extended_text),
    (ContentKind.IMAGE, _captioned("imageMessage", IMAGE_TAG)),
    (ContentKind.VIDEO, _captioned("videoMessage", VIDEO_TAG)),
    (ContentKind.IMAGE, _marker("imageMessage", IMAGE_TAG)),
    (ContentKind.VIDEO, _marker("videoMessage", VIDEO_TAG)),
    (ContentKind.AUDIO, _marker("audioMessage", AUDIO_TAG)),
    (ContentKind.DOCUMENT, _document),
    (ContentKind.STICKER, _marker("stickerMessage", STICKER_TAG)),
)


def resolve_content(message: Any) -> tuple[ContentKind, Optional[str]]:
    """Classify a message-content object and extract its text."""
    if isinstance(message, str):
        text = _clean_str(message)
        return ContentKind.TEXT, text
    if not isinstance(message, dict):
        return ContentKind.UNSUPPORTED, None

    for kind, resolver in CONTENT_RESOLVERS:
        text = resolver(message)
        if text:
            return kind, text

    if any(key in message for key in CONTROL_KEYS):
        return ContentKind.CONTROL, None
    return ContentKind.UNSUPPORTED, UNSUPPORTED_TEXT


def _find_container(body: dict) -> Optional[dict]:
    data = body.get("data")
    if isinstance(data, dict):
        messages = data.get("messages")
        if isinstance(messages, list):
            messages = next((item for item in messages if isinstance(item, dict)), None)
        if isinstance(messages, dict):
            return messages
        if "message" in data or "key" in data:
            return data
    if "message" in body:
        return body
    return None


def strip_channel_suffix(identifier: str) -> str:
    """Drop ``@domain`` and ``:device`` from phone-style JIDs.

    Channel-native identifiers (linked ids, groups, newsletters) are returned
    unchanged because they cannot be addressed as a phone number.
    """
    local, sep, domain = identifier.partition("@")
    if sep and domain.lower() in CHANNEL_NATIVE_DOMAINS:
        return identifier
    local = local.split(":", 1)[0]
    return local.strip()


def _resolve_sender(container: dict) -> Optional[str]:
    key = _sub(container, "key") or {}

    # Only the message container is trusted for explicit fields; a top-level
    # "sender" on nested bodies names the receiving instance, not the author.
    for field_name in ("sender", "phone", "from"):
        explicit = container.get(field_name)
        if isinstance(explicit, int) and not isinstance(explicit, bool):
            explicit = str(explicit)
        explicit = _clean_str(explicit)
        if explicit:
            return strip_channel_suffix(explicit)

    remote_jid = _clean_str(container.get("remoteJid")) or _clean_str(key.get("remoteJid"))
    if not remote_jid:
        return None

    if remote_jid.lower().endswith("@" + GROUP_DOMAIN):
        participant = _clean_str(key.get("participant")) or _clean_str(container.get("participant"))
        if participant:
            return strip_channel_suffix(participant)

    return strip_channel_suffix(remote_jid) or None


def _is_from_me(container: dict) -> bool:
    key = _sub(container, "key") or {}
    return bool(key.get("fromMe") or container.get("fromMe"))


def _not_processable(reason: str, code: str) -> Result[CanonicalMessage]:
    logger.info("Webhook item not processable", extra={"context": {"reason": code}})
    return Result.failure(reason, code)


def normalize(body: Any) -> Result[CanonicalMessage]:
    """Parse a webhook body; a failed Result means the item is not processable."""
    if not isinstance(body, dict):
        return _not_processable("Body is not an object", "no_container")

    event = body.get("event")
    if event is not None and str(event).strip().lower() not in ACCEPTED_EVENTS:
        return _not_processable(f"Event '{event}' is not an inbound message", "ignored_event")

    container = _find_container(body)
    if container is None:
        return _not_processable("No message container", "no_container")

    if _is_from_me(container):
        return _not_processable("Outbound echo", "from_me")

    kind, text = resolve_content(container.get("message"))
    if kind == ContentKind.CONTROL:
        return _not_processable("Control sub-message", "control_message")

    sender = _resolve_sender(container)
    if not sender:
        return _not_processable("Sender could not be resolved", "missing_sender")
    if not text:
        return _not_processable("Text could not be resolved", "missing_text")

    key = _sub(container, "key") or {}
    message = CanonicalMessage(
        sender=sender,
        text=text,
        kind=kind,
        sender_name=_clean_str(container.get("pushName")) or _clean_str(body.get("pushName")) or DEFAULT_SENDER_NAME,
        message_id=_clean_str(key.get("id")) or _clean_str(container.get("id")),
    )
    logger.info(
        "Webhook normalized",
        extra={"context": {"sender": sender, "kind": kind.value, "text_preview": preview(text)}},
    )
    return Result.success(message)
