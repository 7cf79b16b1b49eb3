"""E-posta gönderimi: sipariş onayı ve teslimat bilgisi (lisans kodları / indirme linkleri)."""
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from app.core.config import settings

log = logging.getLogger("dijipazar.email")


def format_amount(amount_minor: int, currency: str) -> str:
    return f"{amount_minor / 100:.2f} {(currency or '').upper()}"


def build_order_confirmation_html(order_id: int, fulfillment_text: str, amount_minor: int, currency: str) -> tuple[str, str]:
    """Sipariş onayı HTML + konu. (subject, html_body)."""
    from_name = settings.smtp_from_name or "Dijipazar"
    subject = f"{from_name} - Siparişiniz hazır (#{order_id})"
    lines = "".join(
        f'<li style="margin:0 0 6px;font-family:monospace;">{html.escape(line)}</li>'
        for line in (fulfillment_text or "").splitlines()
        if line.strip()
    )
    base_url = (settings.frontend_url or "").strip().rstrip("/")
    body = f"""<!DOCTYPE html>
<html lang="tr">
<head>
  <meta charset="UTF-8" />
  <title>{html.escape(subject)}</title>
</head>
<body style="margin:0;padding:0;background-color:#f1f5f9;font-family:'Segoe UI',system-ui,-apple-system,sans-serif;">
  <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="background-color:#f1f5f9;">
    <tr>
      <td align="center" style="padding:32px 16px;">
        <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="max-width:520px;background:#ffffff;border-radius:16px;overflow:hidden;">
          <tr>
            <td style="background:#1a2d42;padding:24px;text-align:center;font-size:18px;font-weight:600;color:#ffffff;">{html.escape(from_name)}</td>
          </tr>
          <tr>
            <td style="padding:24px;">
              <p style="margin:0 0 12px;font-size:16px;color:#334155;">Ödemeniz alındı. Sipariş no: <strong>#{order_id}</strong></p>
              <p style="margin:0 0 16px;font-size:14px;color:#334155;">Tutar: {format_amount(amount_minor, currency)}</p>
              <ul style="margin:0 0 16px;padding-left:18px;font-size:14px;color:#0f172a;">{lines}</ul>
              <p style="margin:0;font-size:13px;color:#64748b;">İndirme linkleri sınırlı süre geçerlidir. Siparişiniz: {html.escape(base_url)}/orders/{order_id}</p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""
    return subject, body


def is_mail_configured() -> bool:
    """SMTP ayarları dolu mu?"""
    return bool((settings.smtp_host or "").strip())


def send_email(to: str, subject: str, html_body: str) -> bool:
    """Tek bir HTML e-posta gönderir. Başarılı ise True."""
    if not is_mail_configured():
        log.warning("SMTP not configured; email not sent to %s", to)
        return False
    host = settings.smtp_host.strip()
    port = int(settings.smtp_port or 587)
    user = (settings.smtp_user or "").strip()
    password = (settings.smtp_password or "").strip()
    from_addr = (settings.smtp_from or "noreply@dijipazar.com").strip()
    from_name = (settings.smtp_from_name or "").strip()
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_addr}>" if from_name else from_addr
    msg["To"] = to
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    try:
        with smtplib.SMTP(host, port, timeout=15) as smtp:
            if settings.smtp_use_tls:
                smtp.starttls()
            if user and password:
                smtp.login(user, password)
            smtp.sendmail(from_addr, [to], msg.as_string())
        log.info("Email sent to %s subject=%s", to, subject[:50])
        return True
    except (smtplib.SMTPException, OSError) as e:
        log.exception("Failed to send email to %s: %s", to, e)
        return False


def send_order_confirmation_email(to_email: str, order_id: int, fulfillment_text: str, amount_minor: int, currency: str) -> bool:
    """Teslimat sonrası müşteriye kod/link listesini gönderir."""
    subject, body = build_order_confirmation_html(order_id, fulfillment_text, amount_minor, currency)
    return send_email(to_email, subject, body)
