from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from html import escape

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from salon.app.core.constants import BOT_TOKEN
from salon.app.services.shared_services import _safe_send, format_date_uk, format_price

logger = logging.getLogger(__name__)

__all__ = [
    "BookingNotice",
    "format_booking_notification",
    "format_cancellation_notification",
    "create_bot",
    "notify_salon_owner",
]


@dataclass(frozen=True)
class BookingNotice:
    """Everything the owner message needs, already resolved from the DB."""

    salon_name: str
    client_name: str
    client_phone: str
    service_name: str
    date: date
    time: str
    duration_minutes: int
    price: Decimal
    master_name: str | None = None


def format_booking_notification(notice: BookingNotice) -> str:
    lines = [
        "🔔 <b>Нове бронювання!</b>",
        "",
        f"📍 <b>{escape(notice.salon_name)}</b>",
        "",
        f"👤 <b>Клієнт:</b> {escape(notice.client_name)}",
        f"📞 <b>Телефон:</b> {escape(notice.client_phone)}",
        "",
        f"💇 <b>Послуга:</b> {escape(notice.service_name)}",
    ]
    if notice.master_name:
        lines.append(f"👨‍💼 <b>Майстер:</b> {escape(notice.master_name)}")
    lines += [
        "",
        f"📅 <b>Дата:</b> {format_date_uk(notice.date)}",
        f"⏰ <b>Час:</b> {notice.time}",
        f"⏱ <b>Тривалість:</b> {notice.duration_minutes} хв",
        f"💰 <b>Вартість:</b> {format_price(notice.price)}",
        "",
        "<i>Перегляньте деталі в панелі управління</i>",
    ]
    return "\n".join(lines)


def format_cancellation_notification(notice: BookingNotice) -> str:
    return "\n".join([
        "❌ <b>Бронювання скасовано</b>",
        "",
        f"📍 <b>{escape(notice.salon_name)}</b>",
        "",
        f"👤 <b>Клієнт:</b> {escape(notice.client_name)}",
        f"💇 <b>Послуга:</b> {escape(notice.service_name)}",
        f"📅 <b>Дата:</b> {format_date_uk(notice.date)}",
        f"⏰ <b>Час:</b> {notice.time}",
    ])


def create_bot(token: str | None = None) -> Bot | None:
    """Build the notifications Bot, or None when no token is configured."""
    token = token if token is not None else BOT_TOKEN
    if not token:
        logger.debug("create_bot: BOT_TOKEN is not set; Telegram delivery disabled")
        return None
    return Bot(token=token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))


async def notify_salon_owner(chat_id: str | int, message: str, bot: Bot) -> bool:
    """Send one owner notification. Returns False on Telegram API failure.

    Callers must pass the running bot; nothing here creates one implicitly.
    """
    ok = await _safe_send(bot, chat_id, message)
    if not ok:
        logger.warning("notify_salon_owner: delivery to %s failed", chat_id)
    return ok
