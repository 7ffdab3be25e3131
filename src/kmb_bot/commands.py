from __future__ import annotations

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import BadRequest, TelegramError
from telegram.ext import ContextTypes

from .config import BotSettings
from .flows import load_eta, search_route, select_direction
from .formatter import (
    STOP_CALLBACK,
    TAB_CALLBACK,
    Panel,
    parse_callback,
    render_eta_loading,
    render_eta_panel,
    render_stops_panel,
)
from .kmb_api import KmbClient
from .session import LookupSession
from .stop_cache import StopDetailCache

logger = logging.getLogger(__name__)

EXPIRED_BUTTON = "請重新查詢路線"


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Send greeting and usage basics."""

    message = (
        "👋 你好！輸入巴士號碼即可查詢路線，例如：1A\n"
        "選擇方向後，點擊車站查看預計到站時間。"
    )
    await update.message.reply_text(message)


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = (
        "用法：\n"
        "  /route <巴士號碼>\n"
        "  或直接輸入巴士號碼\n\n"
        "例子：\n"
        "  /route 1A\n"
        "  960"
    )
    await update.message.reply_text(message)


async def route_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /route <number>."""

    query = " ".join(context.args) if context.args else ""
    await _search(update, context, query)


async def route_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Treat a plain text message as a route number."""

    await _search(update, context, update.message.text or "")


async def button(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Dispatch direction tab and stop button presses."""

    query = update.callback_query
    session = _session(context)
    try:
        action = parse_callback(query.data)
    except ValueError:
        logger.warning("Ignoring unknown callback data %r", query.data)
        await query.answer()
        return

    if action.route_token != session.route_token:
        await query.answer(EXPIRED_BUTTON)
        return
    await query.answer()

    if action.kind == TAB_CALLBACK and action.value.isdigit():
        await _show_direction(update, context, session, int(action.value))
    elif action.kind == STOP_CALLBACK:
        await _show_eta(update, context, session, action.value)


async def log_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Unhandled error while processing update %s", update, exc_info=context.error)


async def _search(update: Update, context: ContextTypes.DEFAULT_TYPE, text: str) -> None:
    session = _session(context)
    chat_id = update.effective_chat.id

    async def take_down_panels() -> None:
        await _delete_panels(context, chat_id, session)

    outcome = await search_route(
        session, _client(context), _cache(context), text, on_start=take_down_panels
    )
    if outcome is None:
        return
    if outcome.error:
        await update.message.reply_text(outcome.error)
        return

    panel = render_stops_panel(
        session.directions,
        session.selected_index,
        outcome.stops,
        route_token=session.route_token,
    )
    message = await update.message.reply_text(panel.text, reply_markup=_markup(panel))
    session.stops_message_id = message.message_id


async def _show_direction(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    session: LookupSession,
    index: int,
) -> None:
    chat_id = update.effective_chat.id
    session.clear_eta()
    await _delete_message(context, chat_id, session.eta_message_id)
    session.eta_message_id = None

    try:
        outcome = await select_direction(session, _client(context), _cache(context), index)
    except IndexError:
        logger.warning("Direction %s not available for route %s", index, session.route)
        return
    if outcome is None:
        return

    panel = render_stops_panel(
        session.directions,
        session.selected_index,
        outcome,
        route_token=session.route_token,
    )
    await _edit_panel(context, chat_id, update.callback_query.message.message_id, panel)
    session.stops_message_id = update.callback_query.message.message_id


async def _show_eta(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    session: LookupSession,
    stop_id: str,
) -> None:
    chat_id = update.effective_chat.id

    async def show_loading() -> None:
        await _put_eta_panel(context, chat_id, session, render_eta_loading())

    outcome = await load_eta(
        session, _client(context), _cache(context), stop_id, on_loading=show_loading
    )
    if outcome is None:
        return
    panel = render_eta_panel(outcome, tz=_settings(context).kmb_settings.tzinfo)
    await _put_eta_panel(context, chat_id, session, panel)


async def _put_eta_panel(
    context: ContextTypes.DEFAULT_TYPE,
    chat_id: int,
    session: LookupSession,
    panel: Panel,
) -> None:
    if session.eta_message_id is not None:
        await _edit_panel(context, chat_id, session.eta_message_id, panel)
        return
    message = await context.bot.send_message(chat_id, panel.text, reply_markup=_markup(panel))
    if session.eta_message_id is not None:
        # Another stop lookup sent its panel while this send was pending.
        await _delete_message(context, chat_id, session.eta_message_id)
    session.eta_message_id = message.message_id


async def _edit_panel(
    context: ContextTypes.DEFAULT_TYPE,
    chat_id: int,
    message_id: int,
    panel: Panel,
) -> None:
    try:
        await context.bot.edit_message_text(
            panel.text,
            chat_id=chat_id,
            message_id=message_id,
            reply_markup=_markup(panel),
        )
    except BadRequest as exc:
        if "not modified" not in str(exc).lower():
            raise
        logger.debug("Panel %s unchanged", message_id)


async def _delete_panels(
    context: ContextTypes.DEFAULT_TYPE, chat_id: int, session: LookupSession
) -> None:
    await _delete_message(context, chat_id, session.stops_message_id)
    await _delete_message(context, chat_id, session.eta_message_id)
    session.stops_message_id = None
    session.eta_message_id = None


async def _delete_message(
    context: ContextTypes.DEFAULT_TYPE, chat_id: int, message_id: int | None
) -> None:
    if message_id is None:
        return
    try:
        await context.bot.delete_message(chat_id, message_id)
    except TelegramError as exc:
        logger.debug("Could not delete panel %s: %s", message_id, exc)


def _markup(panel: Panel) -> InlineKeyboardMarkup | None:
    if not panel.keyboard:
        return None
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton(b.label, callback_data=b.data) for b in row]
            for row in panel.keyboard
        ]
    )


def _session(context: ContextTypes.DEFAULT_TYPE) -> LookupSession:
    session = context.chat_data.get("session")
    if session is None:
        session = context.chat_data["session"] = LookupSession()
    return session


def _settings(context: ContextTypes.DEFAULT_TYPE) -> BotSettings:
    return context.application.bot_data["settings"]


def _client(context: ContextTypes.DEFAULT_TYPE) -> KmbClient:
    return context.application.bot_data["kmb_client"]


def _cache(context: ContextTypes.DEFAULT_TYPE) -> StopDetailCache:
    return context.application.bot_data["stop_cache"]
