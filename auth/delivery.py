"""
auth/delivery.py -- How a freshly issued one-time code reaches the user.

The login flow calls deliver(email, code) and then asks reveals_code whether
the code may also travel back in the HTTP response. Swapping in an email or
SMS sender means adding a class here; the service does not change.

  ResponseDelivery  -- no side channel; the code is returned to the caller.
                       Development and test behavior, and the default.
  LogDelivery       -- writes the code to the payflow.delivery logger and keeps
                       it out of the response. Useful for local demos where the
                       API response is visible to someone other than the user.
"""

from __future__ import annotations

import logging
from typing import Protocol

from auth.validation import mask_email

logger = logging.getLogger("payflow.delivery")


class OtpDelivery(Protocol):
    reveals_code: bool

    def deliver(self, email: str, code: str) -> None: ...


class ResponseDelivery:
    reveals_code = True

    def deliver(self, email: str, code: str) -> None:
        logger.debug("OTP for %s returned in API response", mask_email(email))


class LogDelivery:
    reveals_code = False

    def deliver(self, email: str, code: str) -> None:
        logger.info("OTP for %s: %s", email, code)


_DELIVERIES: dict[str, type] = {
    "response": ResponseDelivery,
    "log": LogDelivery,
}


def build_delivery(name: str) -> OtpDelivery:
    """Instantiate the delivery named by OTP_DELIVERY. Unknown names raise ValueError."""
    try:
        return _DELIVERIES[name.strip().lower()]()
    except KeyError:
        raise ValueError(f"Unknown OTP delivery {name!r}; expected one of {sorted(_DELIVERIES)}") from None
