"""ZeptoMail implementation of EmailProvider.

Messages are rendered from Jinja2 templates under templates/emails and posted
to the ZeptoMail HTTP API through the shared HttpClient. Delivery problems are
logged and reported as False; the caller decides whether they are fatal.
"""

import os
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import EmailSettings
from infrastructure.email.protocol import OTP_PURPOSE_RESET
from infrastructure.http_client import HttpClient
from shared.logging import get_logger

log = get_logger(__name__)

_ZEPTO_API_URL = "https://api.zeptomail.in/v1.1/email"
_DEFAULT_TEMPLATE_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "templates",
    "emails",
)


class ZeptoMailProvider:
    def __init__(
        self,
        settings: EmailSettings,
        http_client: HttpClient,
        app_url: str = "https://mentormatch.app",
        app_name: str = "MentorMatch",
        template_dir: str = _DEFAULT_TEMPLATE_DIR,
        otp_ttl_minutes: int = 10,
        verification_ttl_hours: int = 24,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._app_url = app_url
        self._app_name = app_name
        self._otp_ttl_minutes = otp_ttl_minutes
        self._verification_ttl_hours = verification_ttl_hours
        self._jinja = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=select_autoescape(["html", "xml"]),
        )

    async def _send(
        self,
        to_email: str,
        to_name: Optional[str],
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        if not self._settings.zepto_api_token:
            log.error("zepto_mail_send_failed", reason="token_not_configured")
            return False

        payload: dict = {
            "from": {
                "address": self._settings.zepto_from_email,
                "name": self._settings.zepto_from_name,
            },
            "to": [
                {
                    "email_address": {
                        "address": to_email,
                        "name": to_name or to_email,
                    }
                }
            ],
            "subject": subject,
            "htmlbody": html_body,
        }
        if text_body:
            payload["textbody"] = text_body

        token = self._settings.zepto_api_token
        if not token.startswith("Zoho-enczapikey "):
            token = f"Zoho-enczapikey {token}"

        headers = {"Authorization": token, "Content-Type": "application/json"}

        try:
            response = await self._http.post(
                _ZEPTO_API_URL, json=payload, headers=headers
            )
            if response.status_code in (200, 201, 202):
                log.info("email_sent_success", to_email=to_email, subject=subject)
                return True
            log.error(
                "email_sent_failed",
                to_email=to_email,
                subject=subject,
                status_code=response.status_code,
                response=response.text[:200],
            )
            return False
        except Exception as e:
            log.error(
                "email_send_error",
                to_email=to_email,
                subject=subject,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def send_verification_email(
        self, email: str, token: str, first_name: Optional[str]
    ) -> bool:
        subject = f"Verify your email - {self._app_name}"
        verify_url = f"{self._app_url}/verify-email?token={token}"
        template = self._jinja.get_template("verification.html")
        html_body = template.render(
            verify_url=verify_url,
            first_name=first_name,
            ttl_hours=self._verification_ttl_hours,
            app_url=self._app_url,
            app_name=self._app_name,
        )
        text_body = (
            f"Verify Your Email - {self._app_name}\n\n"
            f"Hello{f' {first_name}' if first_name else ''},\n\n"
            f"Confirm your email address by opening this link:\n{verify_url}\n\n"
            f"This link expires in {self._verification_ttl_hours} hours."
        )
        return await self._send(email, first_name, subject, html_body, text_body)

    async def send_otp_email(
        self, email: str, otp_code: str, first_name: Optional[str], purpose: str
    ) -> bool:
        if purpose == OTP_PURPOSE_RESET:
            subject = f"Reset your password - {self._app_name}"
            headline = "Reset Your Password"
            intro = "Your password reset code is"
        else:
            subject = f"Your verification code - {self._app_name}"
            headline = "Verify Your Account"
            intro = "Your verification code is"
        template = self._jinja.get_template("otp.html")
        html_body = template.render(
            otp_code=otp_code,
            first_name=first_name,
            headline=headline,
            intro=intro,
            ttl_minutes=self._otp_ttl_minutes,
            app_url=self._app_url,
            app_name=self._app_name,
        )
        text_body = (
            f"{headline} - {self._app_name}\n\n"
            f"Hello{f' {first_name}' if first_name else ''},\n\n"
            f"{intro}: {otp_code}\n\n"
            f"This code expires in {self._otp_ttl_minutes} minutes."
        )
        return await self._send(email, first_name, subject, html_body, text_body)

    async def send_welcome_email(
        self, email: str, first_name: Optional[str], role: str
    ) -> bool:
        subject = f"Welcome to {self._app_name}!"
        next_path = "/onboarding/profile" if role == "mentor" else "/dashboard"
        template = self._jinja.get_template("welcome.html")
        html_body = template.render(
            first_name=first_name,
            role=role,
            start_url=f"{self._app_url}{next_path}",
            app_url=self._app_url,
            app_name=self._app_name,
        )
        text_body = (
            f"Welcome to {self._app_name}{f', {first_name}' if first_name else ''}!\n\n"
            f"Get started: {self._app_url}{next_path}"
        )
        return await self._send(email, first_name, subject, html_body, text_body)
