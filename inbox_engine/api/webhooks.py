"""
Inbound webhook endpoints - one adapter per provider payload shape.
Each webhook normalizes its payload into an InboundMessage and passes it to
record_inbound_message(). Provider signature verification happens upstream
(edge proxy) before requests reach these handlers.

Error mapping:
- missing sender          -> 400 {"error": "missing_from"}
- unparseable payload     -> 400 {"error": "invalid_payload" | "invalid_form"}
- invalid_phone           -> 400 {"error": "invalid_phone"}
- any other engine error  -> 500 {"error": <code>}
"""
import json
import logging
import re
from typing import Any, Iterable, Mapping, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from inbox_engine.database import get_db
from inbox_engine.exceptions import InboundMessageError, InvalidPhoneError
from inbox_engine.schemas.inbound import InboundMessage
from inbox_engine.services.inbox import record_inbound_message
from inbox_engine.utils.logging import mask_address

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

MISSED_CALL_STATUSES = ("no-answer", "busy", "failed", "canceled")
MISSED_CALL_BODY = "Missed call"

_HTML_TAG = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")


def _read_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _pick_string(payload: Mapping[str, Any], keys: Iterable[str]) -> Optional[str]:
    """First non-blank string among the given keys."""
    for key in keys:
        value = _read_string(payload.get(key))
        if value:
            return value
    return None


def strip_html(html: str) -> str:
    return _WHITESPACE.sub(" ", _HTML_TAG.sub(" ", html)).strip()


def parse_duration(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def is_missed_call(status: Optional[str], duration: Optional[float]) -> bool:
    """No-answer/busy/failed/canceled, or 'completed' with zero duration."""
    if not status:
        return False
    status = status.lower()
    if status in MISSED_CALL_STATUSES:
        return True
    return status == "completed" and (duration or 0) == 0


def _error(code: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": code})


async def _record(
    db: AsyncSession, inbound: InboundMessage, fallback_code: str
):
    """
    Run the engine and translate failures into a response.
    Returns (result, None) on success or (None, error_response).
    """
    try:
        return await record_inbound_message(db, inbound), None
    except InvalidPhoneError as e:
        return None, _error(e.code, 400)
    except InboundMessageError as e:
        logger.error(
            "Inbound %s failed: %s", inbound.channel, e.code,
            extra={"channel": inbound.channel, "provider": inbound.provider, "error_code": e.code},
        )
        return None, _error(e.code, 500)
    except Exception as e:
        logger.error(
            "Inbound %s failed unexpectedly: %s", inbound.channel, str(e),
            exc_info=True,
            extra={"channel": inbound.channel, "provider": inbound.provider, "error_code": fallback_code},
        )
        return None, _error(fallback_code, 500)


@router.post("/twilio/sms")
async def twilio_sms_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Twilio inbound SMS/MMS webhook.
    Twilio sends form-encoded data, not JSON.
    """
    try:
        form_data = await request.form()
    except Exception:
        return _error("invalid_form", 400)

    from_phone = _read_string(form_data.get("From"))
    if not from_phone:
        return _error("missing_from", 400)

    sms_status = _read_string(form_data.get("SmsStatus"))
    num_media_raw = _read_string(form_data.get("NumMedia"))
    try:
        num_media = int(num_media_raw) if num_media_raw else 0
    except ValueError:
        num_media = None

    media_urls = []
    for index in range(num_media or 0):
        url = _read_string(form_data.get(f"MediaUrl{index}"))
        if url:
            media_urls.append(url)

    logger.info("Inbound SMS from %s (%d media)", mask_address(from_phone), len(media_urls))

    inbound = InboundMessage(
        channel="sms",
        body=_read_string(form_data.get("Body")) or "",
        from_address=from_phone,
        to_address=_read_string(form_data.get("To")),
        provider="twilio",
        provider_message_id=(
            _read_string(form_data.get("MessageSid")) or _read_string(form_data.get("SmsSid"))
        ),
        media_urls=media_urls,
        metadata={"smsStatus": sms_status, "numMedia": num_media},
    )
    _, error = await _record(db, inbound, "inbound_sms_failed")
    if error is not None:
        return error
    return PlainTextResponse("ok")


@router.post("/twilio/voice")
async def twilio_voice_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Twilio call status webhook. Only missed calls become inbox messages;
    answered calls are acknowledged and ignored.
    """
    try:
        form_data = await request.form()
    except Exception:
        return _error("invalid_form", 400)

    from_phone = _read_string(form_data.get("From"))
    if not from_phone:
        return _error("missing_from", 400)

    call_status = _read_string(form_data.get("CallStatus"))
    duration = parse_duration(_read_string(form_data.get("CallDuration")))

    if not is_missed_call(call_status, duration):
        return PlainTextResponse("ok")

    logger.info("Missed call from %s (%s)", mask_address(from_phone), call_status)

    inbound = InboundMessage(
        channel="call",
        body=MISSED_CALL_BODY,
        subject=MISSED_CALL_BODY,
        from_address=from_phone,
        to_address=_read_string(form_data.get("To")),
        provider="twilio",
        provider_message_id=_read_string(form_data.get("CallSid")),
        metadata={"callStatus": call_status, "callDuration": duration},
    )
    _, error = await _record(db, inbound, "inbound_call_failed")
    if error is not None:
        return error
    return PlainTextResponse("ok")


async def _parse_email_payload(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        payload = await request.json()
        return payload if isinstance(payload, dict) else {}
    form_data = await request.form()
    return {key: value for key, value in form_data.items() if isinstance(value, str)}


@router.post("/email")
async def email_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Inbound email parse webhook (SendGrid / Mailgun style).
    Accepts JSON or form posts.
    """
    try:
        payload = await _parse_email_payload(request)
    except Exception:
        return _error("invalid_payload", 400)

    from_address = _pick_string(payload, ("from", "sender", "From"))
    to_address = _pick_string(payload, ("to", "recipient", "To"))
    subject = _pick_string(payload, ("subject", "Subject"))
    text = _pick_string(payload, ("text", "body-plain", "stripped-text", "Text"))
    html = _pick_string(payload, ("html", "body-html", "stripped-html"))
    message_id = _pick_string(payload, ("Message-Id", "message-id", "messageId", "MessageID"))

    envelope_raw = _pick_string(payload, ("envelope",))
    if envelope_raw:
        try:
            envelope = json.loads(envelope_raw)
        except json.JSONDecodeError:
            logger.debug("Ignoring malformed email envelope")
            envelope = None
        if isinstance(envelope, dict):
            if not from_address:
                from_address = _read_string(envelope.get("from"))
            if not to_address:
                env_to = envelope.get("to")
                if isinstance(env_to, list):
                    to_address = ",".join(str(t) for t in env_to) or None
                else:
                    to_address = _read_string(env_to)

    if not from_address:
        return _error("missing_from", 400)

    body = text or (strip_html(html) if html else "")

    inbound = InboundMessage(
        channel="email",
        body=body,
        subject=subject,
        from_address=from_address,
        to_address=to_address,
        provider="email_webhook",
        provider_message_id=message_id,
        metadata={"rawSubject": subject},
    )
    result, error = await _record(db, inbound, "inbound_email_failed")
    if error is not None:
        return error
    return {"ok": True, "duplicate": result.duplicate}


@router.post("/dm")
async def dm_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Direct-message relay webhook (Messenger, Instagram, site chat).
    'from' is the platform handle; phone/email are optional structured hints.
    """
    try:
        payload = await request.json()
    except Exception:
        return _error("invalid_payload", 400)
    if not isinstance(payload, dict):
        return _error("invalid_payload", 400)

    from_handle = _read_string(payload.get("from"))
    if not from_handle:
        return _error("missing_from", 400)

    source = _read_string(payload.get("source")) or "dm_webhook"

    inbound = InboundMessage(
        channel="dm",
        body=_read_string(payload.get("body")) or "",
        from_address=from_handle,
        to_address=_read_string(payload.get("to")),
        provider=source,
        provider_message_id=_read_string(payload.get("externalId")),
        sender_name=_read_string(payload.get("name")),
        contact_phone=_read_string(payload.get("phone")),
        contact_email=_read_string(payload.get("email")),
        metadata={"source": source},
    )
    result, error = await _record(db, inbound, "inbound_dm_failed")
    if error is not None:
        return error
    return {"ok": True, "duplicate": result.duplicate}
