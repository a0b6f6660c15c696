"""
Outbound mail: SMTP when configured, log-only "dev" mode otherwise.

  - 465 → implicit SSL, 587 → STARTTLS, TLS 1.2 minimum
  - dev_mail=true or missing credentials → message is logged, never sent
  - SMTP failure → logged, process flips to dev mode so later sends don't hang
"""

import smtplib
import ssl
from email.message import EmailMessage

from app.config import get_settings

import structlog

logger = structlog.get_logger()

CODE_TTL_MINUTES = 10
SMTP_TIMEOUT_SECONDS = 15

_smtp_failed = False


def mail_mode() -> str:
    settings = get_settings()
    if _smtp_failed or settings.dev_mail or not settings.mail_configured:
        return "dev"
    return "smtp"


def _build_message(to: str, subject: str, text: str, html: str | None) -> EmailMessage:
    settings = get_settings()
    msg = EmailMessage()
    msg["From"] = settings.smtp_from or settings.smtp_user or "no-reply@example.com"
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")
    return msg


def _smtp_send(msg: EmailMessage):
    settings = get_settings()
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    if settings.smtp_port == 465 or (settings.smtp_secure and settings.smtp_port != 587):
        with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, context=context,
                              timeout=SMTP_TIMEOUT_SECONDS) as smtp:
            smtp.login(settings.smtp_user, settings.smtp_pass)
            smtp.send_message(msg)
    else:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=SMTP_TIMEOUT_SECONDS) as smtp:
            smtp.starttls(context=context)
            smtp.login(settings.smtp_user, settings.smtp_pass)
            smtp.send_message(msg)


def send_mail(to: str, subject: str, text: str, html: str | None = None) -> str:
    """Send (or log) a message. Returns the mode actually used: "smtp" or "dev".

    Blocking: call through run_in_threadpool from async routes.
    """
    global _smtp_failed
    msg = _build_message(to, subject, text, html)

    if mail_mode() == "smtp":
        try:
            _smtp_send(msg)
            logger.info("mail_sent", to=to, subject=subject)
            return "smtp"
        except (smtplib.SMTPException, OSError) as e:
            logger.error("mail_smtp_failed", to=to, error=str(e))
            _smtp_failed = True

    logger.info("mail_dev_output", to=to, subject=subject, body=text)
    return "dev"


# ─── Templates ─────────────────────────────────────────────────────

def code_email(title: str, code: str, hint: str = "") -> tuple[str, str]:
    """Verification / reset code email → (text, html)."""
    text = (
        f"{title}\n\n"
        f"Your code is: {code}\n\n"
        f"This code expires in {CODE_TTL_MINUTES} minutes. {hint}\n\n"
        "If you didn't request this, ignore this email."
    )
    html = f"""
  <div style="font-family:system-ui,Segoe UI,Roboto,Arial">
    <h2>{title}</h2>
    <p>Your code is:</p>
    <div style="font-size:28px;font-weight:700;letter-spacing:4px;padding:12px 16px;border:1px solid #eee;border-radius:10px;display:inline-block;">
      {code}
    </div>
    <p style="margin-top:12px;color:#555">This code expires in <b>{CODE_TTL_MINUTES} minutes</b>. {hint}</p>
    <p style="color:#777">If you didn't request this, ignore this email.</p>
  </div>"""
    return text, html


def digest_email(name: str, total_clicks: int, top_links: list[dict], dashboard_url: str) -> str:
    lines = [f"• {t.get('short_url') or t.get('code')} — {t['clicks']} clicks" for t in top_links[:5]]
    top = "\n".join(lines) or "—"
    return (
        f"Hi {name or ''},\n\n"
        f"Total clicks: {total_clicks}\n"
        f"Top links:\n{top}\n\n"
        f"Open dashboard: {dashboard_url}"
    )
