"""
Enqueue a test notification, or print queue stats.

Writes straight to the notification_queue table; a running server picks the
job up on its next poll tick.

Usage:
    python scripts/enqueue_notification.py stats
    python scripts/enqueue_notification.py email --to "ana@example.com" --template welcome --var user_name=Ana
    python scripts/enqueue_notification.py sms --phone "+5511999990000" --message "Olá!"
    python scripts/enqueue_notification.py push --user-id user-1 --title "Novo pedido" --body "Tem um novo pedido"
    python scripts/enqueue_notification.py webhook --url https://hooks.example.com/test --priority high
    python scripts/enqueue_notification.py email --to "ana@example.com" --template welcome --delay-minutes 30
"""
import argparse
import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone

from wilnara.database import dispose_engine
from wilnara.models.notification_job import JobPriority
from wilnara.services.notification_queue import NotificationQueue

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _parse_vars(pairs: list[str]) -> dict:
    variables = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise SystemExit(f"--var expects key=value, got {pair!r}")
        variables[key] = value
    return variables


async def enqueue(args, queue: NotificationQueue):
    scheduled_at = None
    if getattr(args, "delay_minutes", None):
        scheduled_at = datetime.now(timezone.utc) + timedelta(minutes=args.delay_minutes)

    if args.channel == "email":
        job_id = await queue.queue_email(
            {
                "to": args.to,
                "subject": args.subject,
                "template": args.template,
                "variables": _parse_vars(args.var),
            },
            priority=args.priority,
            scheduled_at=scheduled_at,
        )
    elif args.channel == "sms":
        job_id = await queue.queue_sms(
            {"phone": args.phone, "message": args.message, "sender": args.sender},
            priority=args.priority,
            scheduled_at=scheduled_at,
        )
    elif args.channel == "push":
        job_id = await queue.queue_push_notification(
            {"user_id": args.user_id, "title": args.title, "body": args.body},
            priority=args.priority,
        )
    else:
        job_id = await queue.queue_webhook(
            {
                "url": args.url,
                "method": args.method,
                "payload": json.loads(args.payload) if args.payload else None,
            },
            priority=args.priority,
        )

    if job_id is None:
        logger.error("Job was not queued - see errors above")
    else:
        logger.info("Queued %s job %s", args.channel, job_id)
    return job_id


async def main():
    parser = argparse.ArgumentParser(description="Enqueue test notifications")
    sub = parser.add_subparsers(dest="channel", required=True)

    sub.add_parser("stats", help="Print job counts by status and type")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--priority", default=JobPriority.NORMAL, choices=JobPriority.ALL)

    delayed = argparse.ArgumentParser(add_help=False)
    delayed.add_argument("--delay-minutes", type=int, default=0)

    email = sub.add_parser("email", parents=[common, delayed])
    email.add_argument("--to", action="append", required=True)
    email.add_argument("--subject", default="Teste Wilnara Tranças")
    email.add_argument("--template", default="welcome")
    email.add_argument("--var", action="append", default=[], help="Template variable, key=value")

    sms = sub.add_parser("sms", parents=[common, delayed])
    sms.add_argument("--phone", action="append", required=True)
    sms.add_argument("--message", default="Mensagem de teste da Wilnara Tranças")
    sms.add_argument("--sender", default=None)

    push = sub.add_parser("push", parents=[common])
    push.add_argument("--user-id", action="append", required=True)
    push.add_argument("--title", default="Teste")
    push.add_argument("--body", default="Notificação de teste")

    webhook = sub.add_parser("webhook", parents=[common])
    webhook.add_argument("--url", required=True)
    webhook.add_argument("--method", default="POST", choices=["GET", "POST", "PUT", "DELETE"])
    webhook.add_argument("--payload", default=None, help="JSON body")

    args = parser.parse_args()
    queue = NotificationQueue()

    try:
        if args.channel == "stats":
            stats = await queue.get_queue_stats()
            print(json.dumps(stats, indent=2))
        else:
            await enqueue(args, queue)
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
