from __future__ import annotations

import logging
from datetime import timedelta

from telegram import Update
from telegram.ext import Application, CallbackContext, CommandHandler

from .errors import NotFound, QuietHoursError, ValidationError
from .notification_queue import NotificationPayload, NotificationQueue, SubmitOutcome
from .scheduler import DeliveryScheduler
from .windows import WindowSet

logger = logging.getLogger(__name__)


def build_application(
    token: str,
    windows: WindowSet,
    queue: NotificationQueue,
    scheduler: DeliveryScheduler,
    sweep_interval_seconds: int,
    admin_user_ids: set[int],
) -> Application:
    app = Application.builder().token(token).post_shutdown(_on_shutdown).build()

    app.add_handler(CommandHandler("quiet_add", _wrap_admin(add_window, admin_user_ids)))
    app.add_handler(CommandHandler("quiet_list", _wrap_admin(list_windows, admin_user_ids)))
    app.add_handler(CommandHandler("quiet_update", _wrap_admin(update_window, admin_user_ids)))
    app.add_handler(CommandHandler("quiet_remove", _wrap_admin(remove_window, admin_user_ids)))
    app.add_handler(CommandHandler("notify", _wrap_admin(notify, admin_user_ids)))
    app.add_handler(CommandHandler("queue", _wrap_admin(show_queue, admin_user_ids)))
    app.add_handler(CommandHandler("flush", _wrap_admin(flush, admin_user_ids)))

    app.bot_data["windows"] = windows
    app.bot_data["queue"] = queue
    app.bot_data["scheduler"] = scheduler

    jq = app.job_queue
    jq.run_repeating(_sweep_job, interval=sweep_interval_seconds, first=10)
    return app


def _wrap_admin(handler, admin_user_ids: set[int]):
    async def wrapped(update: Update, context: CallbackContext):
        if admin_user_ids:
            user = update.effective_user
            if not user or user.id not in admin_user_ids:
                await update.message.reply_text("권한이 없습니다.")
                return
        await handler(update, context)

    return wrapped


def _subject_id(update: Update) -> str:
    return str(update.effective_chat.id)


async def add_window(update: Update, context: CallbackContext) -> None:
    windows: WindowSet = context.application.bot_data["windows"]
    if len(context.args) != 2:
        await update.message.reply_text("사용법: /quiet_add <HH:mm> <HH:mm>")
        return
    try:
        window = windows.create(_subject_id(update), context.args[0], context.args[1])
    except ValidationError as e:
        await update.message.reply_text(f"추가 실패: {e}")
        return
    await update.message.reply_text(f"✅ 방해 금지 시간 추가 완료\nid={window.id}, {window}")


async def list_windows(update: Update, context: CallbackContext) -> None:
    windows: WindowSet = context.application.bot_data["windows"]
    items = windows.list(_subject_id(update))
    if not items:
        await update.message.reply_text("등록된 방해 금지 시간이 없습니다.")
        return
    lines = []
    for w in items:
        suffix = " (자정 넘김)" if w.wraps else ""
        lines.append(f"{w.id}. {w}{suffix}")
    await update.message.reply_text("\n".join(lines))


async def update_window(update: Update, context: CallbackContext) -> None:
    windows: WindowSet = context.application.bot_data["windows"]
    if len(context.args) != 3:
        await update.message.reply_text("사용법: /quiet_update <id> <HH:mm> <HH:mm>")
        return
    window_id = _parse_id(context.args[0])
    if window_id is None:
        await update.message.reply_text("id는 숫자여야 합니다.")
        return
    try:
        window = windows.update(_subject_id(update), window_id, context.args[1], context.args[2])
    except (ValidationError, NotFound) as e:
        await update.message.reply_text(f"수정 실패: {e}")
        return
    await update.message.reply_text(f"수정 완료\nid={window.id}, {window}")


async def remove_window(update: Update, context: CallbackContext) -> None:
    windows: WindowSet = context.application.bot_data["windows"]
    if not context.args:
        await update.message.reply_text("사용법: /quiet_remove <id>")
        return
    window_id = _parse_id(context.args[0])
    if window_id is None:
        await update.message.reply_text("id는 숫자여야 합니다.")
        return
    try:
        windows.delete(_subject_id(update), window_id)
    except NotFound:
        await update.message.reply_text("해당 id를 찾을 수 없습니다.")
        return
    await update.message.reply_text("삭제 완료")


async def notify(update: Update, context: CallbackContext) -> None:
    scheduler: DeliveryScheduler = context.application.bot_data["scheduler"]
    args = list(context.args)
    ttl_minutes = None
    if args and args[0].startswith("ttl="):
        ttl_minutes = _parse_id(args.pop(0)[len("ttl="):])
        if ttl_minutes is None:
            await update.message.reply_text("ttl은 분 단위 숫자여야 합니다.")
            return
    if not args:
        await update.message.reply_text("사용법: /notify [ttl=<분>] <메시지>")
        return

    now = scheduler.clock()
    payload = NotificationPayload(
        subject_id=_subject_id(update),
        message=" ".join(args),
        occurs_at=now,
        relevance_expires_at=now + timedelta(minutes=ttl_minutes) if ttl_minutes is not None else None,
    )
    try:
        outcome = await scheduler.notify(payload)
    except QuietHoursError as e:
        await update.message.reply_text(f"전송 실패: {e}")
        return
    if outcome is SubmitOutcome.QUEUED:
        await update.message.reply_text("방해 금지 시간이라 대기열에 보관했습니다.")


async def show_queue(update: Update, context: CallbackContext) -> None:
    queue: NotificationQueue = context.application.bot_data["queue"]
    items = queue.peek(_subject_id(update))
    if not items:
        await update.message.reply_text("대기 중인 알림이 없습니다.")
        return
    lines = []
    for i, item in enumerate(items, start=1):
        expires = item.payload.relevance_expires_at
        expiry = f" (만료 {expires:%H:%M})" if expires else ""
        lines.append(f"{i}. [{item.queued_at:%H:%M}] {item.payload.message}{expiry}")
    await update.message.reply_text("\n".join(lines))


async def flush(update: Update, context: CallbackContext) -> None:
    scheduler: DeliveryScheduler = context.application.bot_data["scheduler"]
    result = await scheduler.sweep_subject(_subject_id(update))
    await update.message.reply_text(
        f"전송 {result.delivered}건, 만료 {result.expired}건, 실패 {result.failed}건, 남음 {result.remaining}건"
    )


async def _sweep_job(context: CallbackContext) -> None:
    scheduler: DeliveryScheduler = context.application.bot_data["scheduler"]
    try:
        await scheduler.run_once()
    except Exception:
        logger.exception("Sweep job failed")


async def _on_shutdown(app: Application) -> None:
    scheduler: DeliveryScheduler | None = app.bot_data.get("scheduler")
    queue: NotificationQueue | None = app.bot_data.get("queue")
    if scheduler is not None:
        # Last pass delivers whatever is no longer inside a quiet window.
        try:
            await scheduler.run_once()
        except Exception:
            logger.exception("Final sweep on shutdown failed")
    if queue is not None:
        await queue.shutdown()


def _parse_id(value: str) -> int | None:
    try:
        return int(value.strip())
    except ValueError:
        return None
