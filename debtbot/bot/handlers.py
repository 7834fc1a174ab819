"""
Telegram update handlers.

Handlers only translate between Telegram and the services kept in
application.bot_data; no debt state is changed here directly.
"""

import logging
from html import escape
from typing import Tuple

from telegram import InlineKeyboardMarkup, Update
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from debtbot.bot.conversation import SessionStore, advance, start_add, start_edit, start_repay
from debtbot.bot.keyboards import (
    CONVERSATION_PREFIX,
    DELETE_ABORT,
    DELETE_CONFIRM_PREFIX,
    DELETE_PREFIX,
    EDIT_PREFIX,
    HISTORY_PREFIX,
    PAGE_PREFIX,
    REPAY_PREFIX,
    SETTINGS_PREFIX,
    answer_buttons,
    choices_keyboard,
    confirm_keyboard,
    currency_settings_keyboard,
    debt_picker,
    debts_keyboard,
    history_contacts_keyboard,
    history_keyboard,
    notification_settings_keyboard,
    reminder_settings_keyboard,
    settings_keyboard,
)
from debtbot.core.constants import ACTION_PREFIX
from debtbot.models.debt import Debt, DebtDirection, DebtStatus
from debtbot.models.record import UserRecord, UserSettings
from debtbot.schemas.debt import AddDebtCommand, EditDebtCommand, RepayDebtCommand
from debtbot.services.debt_service import DEBT_NOT_FOUND
from debtbot.utils.formatting import describe_debt, format_debts, format_history, format_settings
from debtbot.utils.validation import DebtValidationError, validate_direction

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "<b>Commands</b>\n"
    "/add - record a new debt\n"
    "/debts - your current debts\n"
    "/history - resolved debts\n"
    "/repay - repay a debt in full or in part\n"
    "/edit - change the amount, currency, due date or contact\n"
    "/delete - delete a debt or request its deletion\n"
    "/settings - currency, net balance, notifications, reminders and data export\n"
    "/linkme @old_username - claim debts recorded under a username you used before\n"
    "/cancel - abort the current dialog"
)
NO_SESSION_HINT = "Nothing in progress. Use /add to record a debt or /help for all commands."
CHANGEABLE_STATUSES = (DebtStatus.ACTIVE, DebtStatus.MANUAL)
HISTORY_CONTACT_KEY = "history_contact"
SETTINGS_PATTERN = (
    f"^{SETTINGS_PREFIX}(main|close|export|netbalance|currency(:[A-Za-z]{{3}})?|reminders(:toggle)?|days:\\d+|notify(:\\w+)?)$"
)


def _user_id(update: Update) -> str:
    return str(update.effective_user.id)


def _sessions(context: ContextTypes.DEFAULT_TYPE) -> SessionStore:
    return context.bot_data["sessions"]


def get_reply_target(update: Update):
    if update.message:
        return update.message
    if update.callback_query:
        return update.callback_query.message
    raise ValueError("No reply target available")


async def _replace_message(query, text: str, reply_markup=None, parse_mode=None) -> None:
    try:
        await query.edit_message_text(text, reply_markup=reply_markup, parse_mode=parse_mode)
    except BadRequest as exc:
        # pressing the button of the page that is already shown
        if "not modified" not in str(exc).lower():
            raise


# ===== COMMANDS =====

async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user = update.effective_user
    linked = await context.bot_data["link_service"].register_user(_user_id(update), user.username)
    text = f"Hi, {user.first_name}! I keep track of debts between you and other people.\n\n{HELP_TEXT}"
    if not user.username:
        text += "\n\nSet a Telegram username so others can link debts to you."
    if linked:
        text += f"\n\n{linked} debt(s) recorded for your username are now linked to you."
    await update.message.reply_text(text, parse_mode=ParseMode.HTML)


async def show_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(HELP_TEXT, parse_mode=ParseMode.HTML)


async def link_me(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not context.args:
        await update.message.reply_text("Usage: /linkme @old_username")
        return
    try:
        linked = await context.bot_data["link_service"].link_old_username(
            _user_id(update), update.effective_user.username, context.args[0]
        )
    except DebtValidationError as exc:
        await update.message.reply_text(str(exc))
        return
    if linked:
        await update.message.reply_text(f"{linked} debt(s) linked to your account.")
    else:
        await update.message.reply_text("No debts waiting for that username were found.")


async def add_debt(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    record = await context.bot_data["store"].read(_user_id(update))
    step = start_add(record)
    _sessions(context).put(update.effective_chat.id, step.session)
    await update.message.reply_text(step.reply, reply_markup=choices_keyboard(step.choices))


async def cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if _sessions(context).evict(update.effective_chat.id):
        await update.message.reply_text("Cancelled.")
    else:
        await update.message.reply_text("Nothing to cancel.")


async def show_debts(update: Update, context: ContextTypes.DEFAULT_TYPE, page: int = 1) -> None:
    record = await context.bot_data["store"].read(_user_id(update))
    text, total_pages = format_debts(record, page=page)
    # requests waiting on this user get their answer buttons here too
    markup = debts_keyboard(record, page, total_pages)
    if update.callback_query:
        await _replace_message(update.callback_query, text, markup, ParseMode.HTML)
    else:
        await update.message.reply_text(text, reply_markup=markup, parse_mode=ParseMode.HTML)


async def show_history(update: Update, context: ContextTypes.DEFAULT_TYPE, page: int = 1) -> None:
    record = await context.bot_data["store"].read(_user_id(update))
    contact_user_id = context.chat_data.get(HISTORY_CONTACT_KEY)
    text, total_pages = format_history(record, page=page, contact_user_id=contact_user_id)
    if contact_user_id:
        name = record.known_users.get(contact_user_id, f"User_{contact_user_id}")
        text += f"\n\n<i>Filtered by contact: {escape(name)}</i>"
    markup = history_keyboard(page, total_pages, filtered=bool(contact_user_id))
    if update.callback_query:
        await _replace_message(update.callback_query, text, markup, ParseMode.HTML)
    else:
        await update.message.reply_text(text, reply_markup=markup, parse_mode=ParseMode.HTML)


async def pick_debt_to_repay(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    record = await context.bot_data["store"].read(_user_id(update))
    debts = [(d, debt) for d, debt in record.debts.all() if debt.status in CHANGEABLE_STATUSES]
    markup = debt_picker(record, debts, REPAY_PREFIX)
    if markup is None:
        await update.message.reply_text("You have no active debts to repay.")
        return
    await update.message.reply_text("Which debt is being repaid?", reply_markup=markup)


async def pick_debt_to_edit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    record = await context.bot_data["store"].read(_user_id(update))
    debts = [(d, debt) for d, debt in record.debts.all() if debt.status in CHANGEABLE_STATUSES]
    markup = debt_picker(record, debts, EDIT_PREFIX)
    if markup is None:
        await update.message.reply_text("You have no active debts to edit.")
        return
    await update.message.reply_text("Which debt do you want to change?", reply_markup=markup)


async def pick_debt_to_delete(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    record = await context.bot_data["store"].read(_user_id(update))
    debts = list(record.debts.all())
    markup = debt_picker(record, debts, DELETE_PREFIX, with_direction=False)
    if markup is None:
        await update.message.reply_text("You have no debts to delete.")
        return
    await update.message.reply_text("Which debt should be deleted? You will be asked to confirm.", reply_markup=markup)


async def show_settings(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_settings = await context.bot_data["settings_service"].get(_user_id(update))
    await update.message.reply_text(
        format_settings(user_settings), reply_markup=settings_keyboard(user_settings), parse_mode=ParseMode.HTML
    )


# ===== CALLBACKS =====

async def handle_page(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    _, view, page = query.data.split(":", 2)
    if view == "history":
        await show_history(update, context, page=int(page))
    else:
        await show_debts(update, context, page=int(page))


async def handle_repay_choice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    direction, debt_id = query.data[len(REPAY_PREFIX):].split(":", 1)
    record = await context.bot_data["store"].read(_user_id(update))
    found = record.find_debt(debt_id)
    if found is None or found[1].status not in CHANGEABLE_STATUSES:
        await _replace_message(query, "This debt can no longer be repaid.")
        return
    step = start_repay(validate_direction(direction), found[1])
    _sessions(context).put(update.effective_chat.id, step.session)
    await _replace_message(query, step.reply, choices_keyboard(step.choices))


async def handle_edit_choice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    _, debt_id = query.data[len(EDIT_PREFIX):].split(":", 1)
    record = await context.bot_data["store"].read(_user_id(update))
    found = record.find_debt(debt_id)
    if found is None or found[1].status not in CHANGEABLE_STATUSES:
        await _replace_message(query, "This debt can no longer be edited.")
        return
    step = start_edit(found[1])
    _sessions(context).put(update.effective_chat.id, step.session)
    await _replace_message(query, step.reply, choices_keyboard(step.choices))


def _delete_prompt(record: UserRecord, direction: DebtDirection, debt: Debt) -> Tuple[str, InlineKeyboardMarkup]:
    """What deleting this debt means for its status, and who gets to decide."""
    details = describe_debt(record, direction, debt)
    name = record.party_name(debt)
    confirm_data = f"{DELETE_CONFIRM_PREFIX}{debt.id}"

    if debt.status in (DebtStatus.PENDING_APPROVAL, DebtStatus.PENDING_DELETION_APPROVAL) and debt.awaits_owner_answer:
        if debt.status is DebtStatus.PENDING_APPROVAL:
            text = f"{name} proposed this debt and is waiting for your answer.\n\n{details}"
        else:
            text = f"{name} asked to delete this debt. Confirm or reject?\n\n{details}"
        return text, InlineKeyboardMarkup([answer_buttons(debt)])

    if debt.status in (DebtStatus.MANUAL, DebtStatus.PENDING_CONFIRMATION):
        text = f"Delete this debt? It will be moved to history.\n\n{details}"
        return text, confirm_keyboard("Yes, delete", confirm_data)
    if debt.status is DebtStatus.PENDING_APPROVAL:
        text = f"{name} has not accepted this debt yet. Withdraw it?\n\n{details}"
        return text, confirm_keyboard("Yes, withdraw", confirm_data)
    if debt.status is DebtStatus.PENDING_DELETION_APPROVAL:
        text = f"You asked {name} to delete this debt. Cancel your request?\n\n{details}"
        return text, confirm_keyboard("Yes, cancel my request", confirm_data)
    text = f"This debt is linked with {name}. Deleting it needs their confirmation.\n\n{details}\n\nSend a deletion request?"
    return text, confirm_keyboard("Yes, request deletion", confirm_data)


async def handle_delete_choice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    debt_id = query.data[len(DELETE_PREFIX):]
    record = await context.bot_data["store"].read(_user_id(update))
    found = record.find_debt(debt_id)
    if found is None:
        await _replace_message(query, DEBT_NOT_FOUND)
        return
    text, markup = _delete_prompt(record, *found)
    await _replace_message(query, text, markup)


async def handle_delete_confirm(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    debt_id = query.data[len(DELETE_CONFIRM_PREFIX):]
    result = await context.bot_data["debt_service"].delete_debt(_user_id(update), debt_id)
    await _replace_message(query, result.message)


async def handle_delete_abort(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    await _replace_message(query, "Nothing was deleted.")


async def handle_history_filter(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    action = query.data[len(HISTORY_PREFIX):]
    if action == "contacts":
        record = await context.bot_data["store"].read(_user_id(update))
        markup = history_contacts_keyboard(record)
        if markup is None:
            await query.answer("No linked contacts in your history yet.")
            return
        await query.answer()
        await _replace_message(query, "Show history for which contact?", markup)
        return
    await query.answer()
    if action.startswith("contact:"):
        context.chat_data[HISTORY_CONTACT_KEY] = action[len("contact:"):]
    else:
        context.chat_data.pop(HISTORY_CONTACT_KEY, None)
    await show_history(update, context)


def _settings_view(view: str, user_settings: UserSettings) -> Tuple[str, InlineKeyboardMarkup]:
    if view == "currency":
        return "Choose the default currency for new debts:", currency_settings_keyboard(user_settings)
    if view == "reminders":
        return (
            "Reminders are sent for active debts with a due date.",
            reminder_settings_keyboard(user_settings),
        )
    if view == "notify":
        return (
            "Tap a group to turn its notifications on or off. "
            "Requests you switch off can still be answered from /debts.",
            notification_settings_keyboard(user_settings.notification_settings),
        )
    return format_settings(user_settings), settings_keyboard(user_settings)


async def handle_settings(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    user_id = _user_id(update)
    service = context.bot_data["settings_service"]
    action, _, arg = query.data[len(SETTINGS_PREFIX):].partition(":")

    if action == "close":
        await query.answer()
        await _replace_message(query, "Settings closed.")
        return
    if action == "export":
        data = await service.export(user_id)
        await context.bot.send_document(
            update.effective_chat.id, document=data, filename=f"debts_{user_id}.json",
            caption="Your data. Keep this file safe.",
        )
        await query.answer("Data file sent.")
        return

    result = None
    view = "main"
    if action == "currency":
        if arg:
            result = await service.set_default_currency(user_id, arg)
        else:
            view = "currency"
    elif action == "netbalance":
        result = await service.toggle_net_balance(user_id)
    elif action == "reminders":
        view = "reminders"
        if arg == "toggle":
            result = await service.toggle_reminders(user_id)
    elif action == "days":
        view = "reminders"
        result = await service.set_reminder_days(user_id, int(arg))
    elif action == "notify":
        view = "notify"
        if arg:
            result = await service.toggle_notification_group(user_id, arg)

    if result is None:
        await query.answer()
    else:
        await query.answer(result.message, show_alert=not result.success)
    text, markup = _settings_view(view, await service.get(user_id))
    await _replace_message(query, text, markup, ParseMode.HTML)


async def handle_debt_action(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Buttons attached to notifications: accept/reject, confirm deletion or edit, snooze."""
    query = update.callback_query
    await query.answer()
    result = await context.bot_data["action_router"].handle(_user_id(update), query.data)
    original = query.message.text if query.message and query.message.text else ""
    text = f"{original}\n\n{result.message}" if original else result.message
    await _replace_message(query, text)


async def handle_conversation_choice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    session = _sessions(context).get(update.effective_chat.id)
    if session is None:
        await _replace_message(query, "This dialog has expired. Start again.")
        return
    await query.edit_message_reply_markup(reply_markup=None)
    await _advance_session(update, context, session, query.data[len(CONVERSATION_PREFIX):])


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    session = _sessions(context).get(update.effective_chat.id)
    if session is None:
        await update.message.reply_text(NO_SESSION_HINT)
        return
    await _advance_session(update, context, session, update.message.text)


async def _advance_session(update: Update, context: ContextTypes.DEFAULT_TYPE, session, text: str) -> None:
    user_id = _user_id(update)
    chat_id = update.effective_chat.id
    target = get_reply_target(update)
    sessions = _sessions(context)

    record = await context.bot_data["store"].read(user_id)
    step = advance(session, text, record.settings)
    if step.command is None:
        sessions.put(chat_id, step.session)
        await target.reply_text(step.reply, reply_markup=choices_keyboard(step.choices))
        return

    sessions.evict(chat_id)
    service = context.bot_data["debt_service"]
    command = step.command
    if isinstance(command, AddDebtCommand):
        result = await service.add_debt(user_id, command)
    elif isinstance(command, RepayDebtCommand):
        result = await service.repay_debt(user_id, command.debt_id, command.direction, command.amount)
    elif isinstance(command, EditDebtCommand):
        result = await service.edit_debt(user_id, command)
    else:
        raise TypeError(f"Unsupported command {type(command).__name__}")
    await target.reply_text(result.message)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Error while handling update %s", update, exc_info=context.error)
    if not isinstance(update, Update) or update.effective_chat is None:
        return
    _sessions(context).evict(update.effective_chat.id)
    try:
        await context.bot.send_message(
            update.effective_chat.id, "Something went wrong. The current dialog was reset, please try again."
        )
    except TelegramError as exc:
        logger.warning("Could not report error to chat %s: %s", update.effective_chat.id, exc)


def register_handlers(application: Application) -> None:
    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", show_help))
    application.add_handler(CommandHandler("linkme", link_me))
    application.add_handler(CommandHandler("add", add_debt))
    application.add_handler(CommandHandler("debts", show_debts))
    application.add_handler(CommandHandler("history", show_history))
    application.add_handler(CommandHandler("repay", pick_debt_to_repay))
    application.add_handler(CommandHandler("edit", pick_debt_to_edit))
    application.add_handler(CommandHandler("delete", pick_debt_to_delete))
    application.add_handler(CommandHandler("settings", show_settings))
    application.add_handler(CommandHandler("cancel", cancel))

    application.add_handler(CallbackQueryHandler(handle_page, pattern=f"^{PAGE_PREFIX}(debts|history):\\d+$"))
    application.add_handler(CallbackQueryHandler(handle_repay_choice, pattern=f"^{REPAY_PREFIX}"))
    application.add_handler(CallbackQueryHandler(handle_edit_choice, pattern=f"^{EDIT_PREFIX}"))
    application.add_handler(CallbackQueryHandler(handle_delete_choice, pattern=f"^{DELETE_PREFIX}"))
    application.add_handler(CallbackQueryHandler(handle_delete_confirm, pattern=f"^{DELETE_CONFIRM_PREFIX}"))
    application.add_handler(CallbackQueryHandler(handle_delete_abort, pattern=f"^{DELETE_ABORT}$"))
    application.add_handler(CallbackQueryHandler(handle_history_filter, pattern=f"^{HISTORY_PREFIX}(contacts|reset|contact:.+)$"))
    application.add_handler(CallbackQueryHandler(handle_settings, pattern=SETTINGS_PATTERN))
    application.add_handler(CallbackQueryHandler(handle_conversation_choice, pattern=f"^{CONVERSATION_PREFIX}"))
    application.add_handler(CallbackQueryHandler(handle_debt_action, pattern=f"^{ACTION_PREFIX}_"))

    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    application.add_error_handler(error_handler)
