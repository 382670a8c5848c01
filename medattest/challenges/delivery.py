"""
Out-of-band delivery of one-time codes.

Real SMTP and SMS transports live outside this service. ``CodeDelivery`` is
the contract they implement; ``OutboxCodeDelivery`` renders the messages and
keeps them in memory, which is what development and the test-suite use.
"""
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from ..config import settings
from .models import ChallengeChannel

# Set up logging
logger = logging.getLogger(__name__)

class CodeMessage(BaseModel):
    """
    A code on its way to the physician. Transient, never persisted.
    """
    channel: ChallengeChannel
    destination: str
    license_number: str
    code: str
    expires_at: datetime

class RenderedMessage(BaseModel):
    """A message after rendering, as handed to a transport."""
    channel: ChallengeChannel
    to: str
    subject: Optional[str] = None
    body: str
    code: str

def mask_destination(destination: str) -> str:
    """
    Hide most of an email address or phone number for display and logs.

    Args:
        destination: Email address or phone number

    Returns:
        str: e.g. ``m***@clinica.com`` or ``***9999``
    """
    if not destination:
        return ""
    if "@" in destination:
        local, _, domain = destination.partition("@")
        return f"{local[:1]}***@{domain}"
    digits = [c for c in destination if c.isdigit()]
    return "***" + "".join(digits[-4:])

def render_email(message: CodeMessage) -> RenderedMessage:
    """
    Render the email carrying an attestation code.

    Args:
        message: Code message

    Returns:
        RenderedMessage: Subject and HTML body
    """
    expiry_time = message.expires_at.strftime("%H:%M")
    html_content = f"""
    <html>
        <head>
            <title>Physician Attestation - Verification Code</title>
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background-color: #3498db; color: white; padding: 10px; text-align: center; }}
                .content {{ padding: 20px; border: 1px solid #ddd; }}
                .code {{ font-size: 24px; font-weight: bold; text-align: center;
                        margin: 20px 0; padding: 10px; background-color: #f5f5f5; }}
                .warning {{ color: #e74c3c; font-weight: bold; }}
                .footer {{ text-align: center; margin-top: 20px; font-size: 12px; color: #777; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>Physician Attestation</h1>
                </div>
                <div class="content">
                    <p>Hello,</p>
                    <p>A medical authorization request is waiting for your attestation (license {message.license_number}). Use the following code to confirm it:</p>
                    <div class="code">{message.code}</div>
                    <p>This code expires at {expiry_time} UTC and can be used only once.</p>
                    <p class="warning">If you did not expect this request, do not share the code and contact the clinic.</p>
                </div>
                <div class="footer">
                    &copy; {message.expires_at.year} Physician Attestation. All rights reserved.
                </div>
            </div>
        </body>
    </html>
    """
    return RenderedMessage(
        channel=ChallengeChannel.EMAIL,
        to=message.destination,
        subject="Physician Attestation - Verification Code",
        body=html_content,
        code=message.code
    )

def render_sms(message: CodeMessage) -> RenderedMessage:
    """
    Render the text message carrying an attestation code.
    """
    return RenderedMessage(
        channel=ChallengeChannel.SMS,
        to=message.destination,
        body=f"Attestation code {message.code}. Valid until {message.expires_at.strftime('%H:%M')} UTC. Do not share it.",
        code=message.code
    )

def render_message(message: CodeMessage) -> RenderedMessage:
    if message.channel == ChallengeChannel.SMS:
        return render_sms(message)
    return render_email(message)

class CodeDelivery:
    """
    Contract for delivery transports.

    ``send`` must raise ``NetworkError`` when the message could not be handed
    over; the issuer then burns the challenge.
    """

    async def send(self, message: CodeMessage) -> None:
        raise NotImplementedError

class OutboxCodeDelivery(CodeDelivery):
    """
    Renders messages and keeps them in an in-memory outbox.
    """

    def __init__(self, sender: Optional[str] = None):
        self.sender = sender or settings.mail_from
        self.outbox: List[RenderedMessage] = []

    async def send(self, message: CodeMessage) -> None:
        rendered = render_message(message)
        self.outbox.append(rendered)
        logger.info(
            f"Verification code for license {message.license_number} queued via "
            f"{message.channel.value} to {mask_destination(message.destination)}"
        )

    def latest_code(self, destination: str) -> Optional[str]:
        """Most recent code sent to a destination, if any."""
        for rendered in reversed(self.outbox):
            if rendered.to == destination:
                return rendered.code
        return None
