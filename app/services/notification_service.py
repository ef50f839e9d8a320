"""
Notification Service - customer and admin emails for number lifecycle events

Best effort: every send is bounded by a timeout, every attempt is recorded in
the email log, and no failure here ever propagates to the caller.
"""
import asyncio
import logging
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, List, Dict, Union
import aiosmtplib
from fastapi import BackgroundTasks
from sqlalchemy import select
from app.config import Settings
from app.database.connection import AsyncSessionLocal
from app.models.email_log import EmailLog
from app.models.user import User
from app.utils.dates import utc_now
from app.utils.exceptions import DependencyFailure

logger = logging.getLogger(__name__)


def _money(amount: Optional[float], currency: str) -> str:
    return f"{(amount or 0):.2f} {currency}"


def _render(company_name: str, title: str, intro: str, rows: List[tuple], footer: str = "") -> Dict[str, str]:
    """Small HTML + plain text body shared by all templates"""
    html_rows = "".join(f"<tr><td><b>{label}</b></td><td>{value}</td></tr>" for label, value in rows)
    html = f"""
    <html>
    <body style="font-family: Inter, sans-serif">
        <h2>{title}</h2>
        <p>{intro}</p>
        <table border="1" cellpadding="5">{html_rows}</table>
        <p>{footer}</p>
        <p><small>{company_name}</small></p>
    </body>
    </html>
    """
    text_rows = "\n".join(f"{label}: {value}" for label, value in rows)
    text = f"{title}\n\n{intro}\n\n{text_rows}\n\n{footer}\n\n{company_name}"
    return {"html": html, "text": text}


class NotificationDispatcher:
    """Sends templated emails over SMTP. Built once in app.main and injected into routes."""

    def __init__(
        self,
        smtp_host: Optional[str],
        smtp_port: int,
        username: Optional[str],
        password: Optional[str],
        from_address: str,
        company_name: str,
        timeout_seconds: float,
        use_tls: bool = False,
        start_tls: bool = True,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.company_name = company_name
        self.timeout_seconds = timeout_seconds
        self.use_tls = use_tls
        self.start_tls = start_tls

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationDispatcher":
        return cls(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            from_address=settings.SMTP_FROM_EMAIL,
            company_name=settings.COMPANY_NAME,
            timeout_seconds=settings.NOTIFICATION_TIMEOUT_SECONDS,
            use_tls=settings.SMTP_USE_TLS,
            start_tls=settings.SMTP_START_TLS,
        )

    async def _send_email(self, to_address: str, subject: str, html: str, text: str) -> None:
        if not self.smtp_host:
            raise DependencyFailure("SMTP is not configured")

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.from_address
        message["To"] = to_address
        message.attach(MIMEText(text, "plain"))
        message.attach(MIMEText(html, "html"))

        try:
            await aiosmtplib.send(
                message,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.username,
                password=self.password,
                use_tls=self.use_tls,
                start_tls=self.start_tls if not self.use_tls else False,
            )
        except aiosmtplib.SMTPException as e:
            raise DependencyFailure(f"SMTP send failed: {e}") from e

    async def _record(
        self,
        user_id: Optional[str],
        user_email: str,
        user_name: Optional[str],
        notification_type: str,
        subject: str,
        status: str,
        error_message: Optional[str] = None,
        alert_data: Optional[Dict] = None,
    ) -> None:
        """Email log entry; a failure to record is logged, not raised"""
        try:
            async with AsyncSessionLocal() as session:
                session.add(EmailLog(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    user_email=user_email,
                    user_name=user_name,
                    notification_type=notification_type,
                    email_subject=subject,
                    status=status,
                    error_message=error_message,
                    alert_data=alert_data,
                    sent_at=utc_now() if status == "sent" else None,
                ))
                await session.commit()
        except Exception as e:
            logger.error(f"❌ [NOTIFY] Failed to record email log for {user_email}: {str(e)}")

    def _message(
        self,
        to_address: str,
        user_id: Optional[str],
        user_name: Optional[str],
        notification_type: str,
        subject: str,
        body: Dict[str, str],
        alert_data: Optional[Dict] = None,
    ) -> Dict:
        return {
            "to_address": to_address,
            "user_id": user_id,
            "user_name": user_name,
            "notification_type": notification_type,
            "subject": subject,
            "body": body,
            "alert_data": alert_data,
        }

    async def _attempt(self, message: Dict) -> Optional[str]:
        """One bounded send. Returns the error text, None when delivered."""
        try:
            await asyncio.wait_for(
                self._send_email(message["to_address"], message["subject"], message["body"]["html"], message["body"]["text"]),
                timeout=self.timeout_seconds,
            )
            return None
        except asyncio.TimeoutError:
            return f"Email send timed out after {self.timeout_seconds}s"
        except DependencyFailure as e:
            return str(e)
        except Exception as e:
            logger.error(f"❌ [NOTIFY] Unexpected error sending to {message['to_address']}: {str(e)}", exc_info=True)
            return f"Unexpected email error: {str(e)}"

    async def _deliver_all(self, messages: List[Dict]) -> List[bool]:
        """
        Sends a batch concurrently, so a slow relay costs one timeout per batch
        rather than one per recipient. Every attempt is then recorded.
        """
        errors = await asyncio.gather(*(self._attempt(message) for message in messages))

        for message, error_message in zip(messages, errors):
            if error_message:
                logger.warning(
                    f"⚠️ [NOTIFY] {message['notification_type']} email to {message['to_address']} not sent: {error_message}"
                )
            else:
                logger.info(f"📧 [NOTIFY] {message['notification_type']} email sent to {message['to_address']}")

            await self._record(
                user_id=message["user_id"],
                user_email=message["to_address"],
                user_name=message["user_name"],
                notification_type=message["notification_type"],
                subject=message["subject"],
                status="failed" if error_message else "sent",
                error_message=error_message,
                alert_data=message["alert_data"],
            )
        return [error_message is None for error_message in errors]

    async def notify_assignment(self, phone_number: Dict, user: Dict, assignment: Dict) -> bool:
        """Tell the customer a number was assigned to them"""
        try:
            currency = phone_number.get("currency", "USD")
            subject = f"Phone number {phone_number['number']} has been assigned to you"
            body = _render(
                self.company_name,
                "Phone Number Assigned",
                f"Hello {user.get('name') or user['email']}, a phone number has been assigned to your account.",
                [
                    ("Number", phone_number["number"]),
                    ("Country", phone_number.get("country")),
                    ("Type", phone_number.get("number_type")),
                    ("Monthly rate", _money(phone_number.get("monthly_rate"), currency)),
                    ("Setup fee", _money(phone_number.get("setup_fee"), currency)),
                    ("Billing start", assignment.get("billing_start_date")),
                    ("Next billing date", assignment.get("next_billing_date")),
                ],
                assignment.get("notes") or "",
            )
            message = self._message(
                user["email"], user.get("id"), user.get("name"), "number_assignment", subject, body,
                alert_data={
                    "alert_type": "phone_assignment",
                    "phone_number": phone_number["number"],
                    "assigned_by": assignment.get("assigned_by"),
                    "monthly_rate": phone_number.get("monthly_rate"),
                    "currency": currency,
                },
            )
            return (await self._deliver_all([message]))[0]
        except Exception as e:
            logger.error(f"❌ [NOTIFY] Assignment notification failed: {str(e)}", exc_info=True)
            return False

    async def notify_unassignment(self, phone_number: Dict, user: Dict, unassignment: Dict) -> bool:
        """Tell the previous holder their number was taken back"""
        try:
            subject = f"Phone number {phone_number['number']} has been removed from your account"
            body = _render(
                self.company_name,
                "Phone Number Unassigned",
                f"Hello {user.get('name') or user['email']}, a phone number has been removed from your account.",
                [
                    ("Number", phone_number["number"]),
                    ("Country", phone_number.get("country")),
                    ("Type", phone_number.get("number_type")),
                    ("Unassigned at", unassignment.get("unassigned_at")),
                    ("Reason", unassignment.get("reason") or "-"),
                ],
            )
            message = self._message(
                user["email"], user.get("id"), user.get("name"), "number_unassignment", subject, body
            )
            return (await self._deliver_all([message]))[0]
        except Exception as e:
            logger.error(f"❌ [NOTIFY] Unassignment notification failed: {str(e)}", exc_info=True)
            return False

    async def notify_purchase(self, phone_number: Dict, user: Dict, purchase: Dict, notify_admins: bool = True) -> bool:
        """Receipt for a self-service purchase, sent together with the admin summary"""
        try:
            currency = phone_number.get("currency", "USD")
            subject = f"Your purchase of {phone_number['number']} is confirmed"
            body = _render(
                self.company_name,
                "Phone Number Purchased",
                f"Hello {user.get('name') or user['email']}, thank you for your purchase.",
                [
                    ("Number", phone_number["number"]),
                    ("Monthly rate", _money(phone_number.get("monthly_rate"), currency)),
                    ("Setup fee", _money(phone_number.get("setup_fee"), currency)),
                    ("Total today", _money(purchase.get("total_amount"), currency)),
                    ("Next billing date", purchase.get("next_billing_date")),
                ],
            )
            messages = [self._message(user["email"], user.get("id"), user.get("name"), "number_purchase", subject, body)]
            if notify_admins:
                messages.extend(await self._admin_purchase_messages(
                    user,
                    [phone_number],
                    total_monthly=phone_number.get("monthly_rate") or 0,
                    total_setup_fees=phone_number.get("setup_fee") or 0,
                    currency=currency,
                    purchase_type="single",
                ))
            return (await self._deliver_all(messages))[0]
        except Exception as e:
            logger.error(f"❌ [NOTIFY] Purchase notification failed: {str(e)}", exc_info=True)
            return False

    async def get_admin_emails(self) -> List[str]:
        async with AsyncSessionLocal() as session:
            stmt = select(User.email).where(User.role == "admin", User.is_active == True)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def _admin_purchase_messages(
        self,
        user: Dict,
        purchased_numbers: List[Dict],
        total_monthly: float,
        total_setup_fees: float,
        currency: str,
        purchase_type: str,
    ) -> List[Dict]:
        admin_emails = await self.get_admin_emails()
        if not admin_emails:
            logger.info("📧 [NOTIFY] No admin emails found for purchase notification")
            return []

        subject = f"{user.get('name') or user['email']} purchased {len(purchased_numbers)} phone number(s)"
        rows = [(item["number"], f"{item.get('country')} {item.get('number_type')} - {_money(item.get('monthly_rate'), currency)}/month")
                for item in purchased_numbers]
        rows.append(("Total monthly", _money(total_monthly, currency)))
        rows.append(("Total setup fees", _money(total_setup_fees, currency)))
        body = _render(
            self.company_name,
            "Customer Phone Number Purchase",
            f"{user.get('name') or user['email']} ({user['email']}) completed a {purchase_type} purchase.",
            rows,
        )
        return [
            self._message(admin_email, "admin", "Admin", f"admin_user_purchase_{purchase_type}", subject, body)
            for admin_email in admin_emails
        ]

    async def notify_admins_of_purchase(
        self,
        user: Dict,
        purchased_numbers: List[Dict],
        total_monthly: float,
        total_setup_fees: float,
        currency: str,
        purchase_type: str = "bulk",
    ) -> int:
        """One summary email per admin for a purchase. Returns how many were sent."""
        try:
            messages = await self._admin_purchase_messages(
                user, purchased_numbers, total_monthly, total_setup_fees, currency, purchase_type
            )
            if not messages:
                return 0

            sent = sum(await self._deliver_all(messages))
            logger.info(f"📧 [NOTIFY] Admin purchase notifications sent to {sent}/{len(messages)} admins")
            return sent
        except Exception as e:
            logger.error(f"❌ [NOTIFY] Admin purchase notification failed: {str(e)}", exc_info=True)
            return 0


class BackgroundNotifier:
    """
    Request-scoped front for the dispatcher. Each notify_* call is queued on
    the request's BackgroundTasks and runs after the response has been sent.
    """

    def __init__(self, dispatcher: NotificationDispatcher, background_tasks: BackgroundTasks):
        self.dispatcher = dispatcher
        self.background_tasks = background_tasks

    def _schedule(self, method_name: str, args: tuple, kwargs: Dict) -> None:
        self.background_tasks.add_task(self._run, method_name, args, kwargs)
        logger.debug(f"📨 [NOTIFY] Queued {method_name} for after the response")

    async def _run(self, method_name: str, args: tuple, kwargs: Dict) -> None:
        await getattr(self.dispatcher, method_name)(*args, **kwargs)

    async def notify_assignment(self, *args, **kwargs) -> None:
        self._schedule("notify_assignment", args, kwargs)

    async def notify_unassignment(self, *args, **kwargs) -> None:
        self._schedule("notify_unassignment", args, kwargs)

    async def notify_purchase(self, *args, **kwargs) -> None:
        self._schedule("notify_purchase", args, kwargs)

    async def notify_admins_of_purchase(self, *args, **kwargs) -> None:
        self._schedule("notify_admins_of_purchase", args, kwargs)


Notifier = Union[NotificationDispatcher, BackgroundNotifier]
