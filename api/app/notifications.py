from html import escape
from typing import Optional, Sequence

from .config import APP_BASE_URL
from .email import send_email, format_sender_name
from .models import Signer, SigningRequest
from .utils import make_token

_WRAPPER = """
<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; background: #f5f6f8; padding: 24px;">
    <div style="max-width: 520px; margin: 0 auto; background: #ffffff; border-radius: 12px; padding: 24px; box-shadow: 0 10px 25px rgba(15,23,42,0.08);">
{content}
    </div>
  </body>
</html>
"""


def signing_link(signer: Signer) -> str:
    token = make_token({"signer_id": signer.id, "signing_request_id": signer.signing_request_id})
    return f"{APP_BASE_URL}/sign/{token}"


def notify_signature_requested(req: SigningRequest, signer: Signer, message: str, requester_name: Optional[str] = None):
    link = signing_link(signer)
    sender = requester_name or "Your contact"
    subject = f"Signature Requested: {req.title}"
    text_body = f"""{sender} sent you a document to review and sign.
Document: “{req.title}”{f' ({req.document_sign_id})' if req.document_sign_id else ''}

{message}

Open document: {link}
"""
    link_html = escape(link)
    html_body = _WRAPPER.format(content=f"""
      <h2 style="margin-top: 0; font-size: 20px; color: #0f172a;">Signature requested</h2>
      <p style="font-size: 14px; color: #1e293b; line-height: 1.5;">{escape(sender)} sent you <strong>{escape(req.title)}</strong> to review and sign.</p>
      <p style="font-size: 14px; color: #1e293b; line-height: 1.5;">{escape(message)}</p>
      <div style="margin: 24px 0;">
        <a href="{link_html}" style="display: inline-block; background: #2563eb; color: #fff; padding: 12px 24px; border-radius: 999px; text-decoration: none; font-weight: 600;">
          Review &amp; Sign
        </a>
      </div>
      <p style="font-size: 12px; color: #64748b;">If the button doesn&apos;t work, copy this link into your browser:<br /><a href="{link_html}">{link_html}</a></p>""")
    send_email(
        signer.signer_email,
        subject,
        text_body,
        html_body=html_body,
        sender_name=format_sender_name(requester_name),
    )


def notify_completed(req: SigningRequest, signers: Sequence[Signer], final_pdf: bytes, sha_final: str):
    subject = f"Completed: {req.title}"
    sha_line = f"Final SHA256: {sha_final}"
    plain_body = (
        f"All parties have finished signing {req.title}.\n\n"
        f"{sha_line}\n\nA copy of the executed PDF is attached for your records."
    )
    html_body = _WRAPPER.format(content=f"""
      <h2 style="margin-top: 0; font-size: 20px; color: #0f172a;">Completed</h2>
      <p style="font-size: 14px; color: #1e293b; line-height: 1.5;">All parties have finished signing <strong>{escape(req.title)}</strong>.</p>
      <p style="font-size: 13px; color: #475569; background: #f8fafc; padding: 12px 16px; border-radius: 8px;">{escape(sha_line)}</p>
      <p style="font-size: 13px; color: #475569;">A copy of the executed PDF is attached for your records.</p>""")
    attachments = [{
        "filename": f"{req.title} - executed.pdf",
        "content": final_pdf,
        "maintype": "application",
        "subtype": "pdf",
    }]
    for s in signers:
        send_email(s.signer_email, subject, plain_body, html_body=html_body, attachments=attachments)
