"""MFA delivery methods and the out-of-band code prompt."""

from __future__ import annotations

import logging
import sys
import threading
from typing import TYPE_CHECKING, Callable, Dict, Optional, Protocol, TextIO

from icloud_photos_sync.constants import MFA_DEVICE_CODE_URL, MFA_DEVICE_URL, MFA_PHONE_CODE_URL, MFA_PHONE_URL

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from icloud_photos_sync.auth import AuthSession

MFA_METHODS = ("device", "sms", "voice")


class MfaMethod:
    """One way of receiving a one-time code: trusted device push, SMS or voice call."""

    def __init__(self, mode: str = "device", phone_number_id: int = 1) -> None:
        normalized = (mode or "device").strip().lower()
        if normalized not in MFA_METHODS:
            raise ValueError(f"Unknown MFA method '{mode}', expected one of {', '.join(MFA_METHODS)}")
        self.mode = normalized
        self.phone_number_id = phone_number_id

    def __repr__(self) -> str:
        return f"MfaMethod({self.mode!r})"

    def __str__(self) -> str:
        return self.mode

    def __eq__(self, other: object) -> bool:
        return isinstance(other, MfaMethod) and (self.mode, self.phone_number_id) == (other.mode, other.phone_number_id)

    @property
    def is_device(self) -> bool:
        return self.mode == "device"

    @property
    def resend_url(self) -> str:
        return MFA_DEVICE_URL if self.is_device else MFA_PHONE_URL

    @property
    def submit_url(self) -> str:
        return MFA_DEVICE_CODE_URL if self.is_device else MFA_PHONE_CODE_URL

    @property
    def resend_success_status(self) -> int:
        return 202 if self.is_device else 200

    @property
    def submit_success_status(self) -> int:
        return 204 if self.is_device else 200

    def resend_payload(self) -> Optional[Dict[str, object]]:
        if self.is_device:
            return None
        return {"phoneNumber": {"id": self.phone_number_id}, "mode": self.mode}

    def submit_payload(self, code: str) -> Dict[str, object]:
        if self.is_device:
            return {"securityCode": {"code": code}}
        return {
            "securityCode": {"code": code},
            "phoneNumber": {"id": self.phone_number_id},
            "mode": self.mode,
        }

    def describe_resend(self, payload: Optional[Dict[str, object]]) -> str:
        data = payload or {}
        if self.is_device:
            return f"{data.get('trustedDeviceCount', 'unknown')} trusted device(s)"
        number = (data.get("trustedPhoneNumber") or {}).get("numberWithDialCode", "unknown")  # type: ignore[union-attr]
        return f"phone {number}"


class MfaPrompt(Protocol):
    """Collects a one-time code out of band and hands it to ``session.submit_mfa``."""

    def start(self, session: "AuthSession") -> None:
        ...

    def stop(self) -> None:
        ...


class ConsoleMfaPrompt:
    """Reads codes from a text stream on a daemon thread.

    Accepted lines: ``123456`` (device code), ``sms 123456`` / ``voice 123456``,
    and ``resend <method>``.
    """

    def __init__(
        self,
        stream: Optional[TextIO] = None,
        output: Callable[[str], None] = print,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.stream = stream or sys.stdin
        self.output = output
        self.logger = logger or logging.getLogger("mfa-server")
        self._thread: Optional[threading.Thread] = None
        self._stopped: Optional[threading.Event] = None

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self, session: "AuthSession") -> None:
        if self.running:
            return
        # One stop flag per reader thread
        self._stopped = threading.Event()
        self._thread = threading.Thread(
            target=self._read_loop, args=(session, self._stopped), name="mfa-prompt", daemon=True
        )
        self._thread.start()
        self.output("🔐 MFA code required: enter '<code>', '<sms|voice> <code>' or 'resend <device|sms|voice>'")
        self.logger.info("MFA prompt started")

    def stop(self) -> None:
        """Stop handling input.

        A reader blocked in ``readline`` cannot be interrupted; it still consumes the
        next line from the stream and discards it without acting on it.
        """
        if self._thread is None or self._stopped is None:
            return
        self._stopped.set()
        self._thread = None
        self.logger.info("MFA prompt stopped")

    def handle_line(self, session: "AuthSession", line: str) -> bool:
        """Process one input line; returns True once a code was submitted."""

        tokens = line.strip().split()
        if not tokens:
            return False
        try:
            if tokens[0].lower() == "resend":
                session.resend_mfa(MfaMethod(tokens[1] if len(tokens) > 1 else "device"))
                return False
            if len(tokens) == 1:
                session.submit_mfa(MfaMethod("device"), tokens[0])
            else:
                session.submit_mfa(MfaMethod(tokens[0]), tokens[1])
        except ValueError as exc:
            self.output(f"❌ {exc}")
            return False
        return True

    def _read_loop(self, session: "AuthSession", stopped: threading.Event) -> None:
        while not stopped.is_set():
            line = self.stream.readline()
            if not line:
                break
            if stopped.is_set():
                self.logger.debug("Discarding input received after the MFA prompt stopped")
                break
            if self.handle_line(session, line):
                break


__all__ = ["ConsoleMfaPrompt", "MFA_METHODS", "MfaMethod", "MfaPrompt"]
