"""EmailProvider protocol — services depend on this, not the concrete implementation.

Every method returns True when the message was accepted for delivery and
False otherwise; providers never retry internally.
"""

from typing import Optional, Protocol

OTP_PURPOSE_SIGNUP = "signup"
OTP_PURPOSE_RESET = "reset"


class EmailProvider(Protocol):
    async def send_verification_email(
        self, email: str, token: str, first_name: Optional[str]
    ) -> bool: ...

    async def send_otp_email(
        self, email: str, otp_code: str, first_name: Optional[str], purpose: str
    ) -> bool: ...

    async def send_welcome_email(
        self, email: str, first_name: Optional[str], role: str
    ) -> bool: ...
