"""Client for the P2C mobile-payment gateway.

One purchase attempt is three calls bound by a gateway-issued control number:

1. pre-registration   -> control number, nothing charged yet
2. purchase execution -> result code, "00" means approved
3. status query       -> final state of a control, for ambiguous outcomes

Only transport failures are retried. A decline is the issuing bank's
decision and is raised immediately.
"""

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

import requests
import structlog
from django.utils import timezone

from reservations.conf import GatewaySettings
from reservations.domain.errors import (
    GatewayDeclineError,
    GatewayProtocolError,
    GatewayTransportError,
)
from reservations.gateway import validators, wire

logger = structlog.get_logger(__name__)

APPROVED_CODE = "00"

# status query "estado"; anything else is still in progress
APPROVED_STATE = "A"
DECLINED_STATE = "R"


@dataclass(frozen=True)
class GatewaySession:
    """One purchase attempt, valid for a single purchase call."""

    control: str
    opened_at: datetime


@dataclass(frozen=True)
class MobilePayer:
    """Buyer data for a P2C charge."""

    phone: str
    bank_code: str
    national_id: str

    def normalized(self) -> "MobilePayer":
        return MobilePayer(
            phone=validators.normalize_phone(self.phone),
            bank_code=validators.validate_bank_code(self.bank_code),
            national_id=validators.normalize_national_id(self.national_id),
        )


@dataclass(frozen=True)
class PurchaseResult:
    control: str
    response_code: str
    description: str
    authorization_id: str = ""
    reference: str = ""
    invoice: str = ""
    amount: str = ""
    sequence: str = ""
    terminal: str = ""
    lot: str = ""
    voucher_lines: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def approved(self) -> bool:
        return self.response_code == APPROVED_CODE

    @property
    def voucher(self) -> str:
        return "\n".join(self.voucher_lines)


@dataclass(frozen=True)
class StatusResult:
    control: str
    response_code: str
    description: str
    state: str = ""
    authorization_id: str = ""
    reference: str = ""
    amount: str = ""
    voucher_lines: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def approved(self) -> bool:
        return self.state == APPROVED_STATE

    @property
    def declined(self) -> bool:
        return self.state == DECLINED_STATE

    @property
    def settled(self) -> bool:
        return self.approved or self.declined

    @property
    def voucher(self) -> str:
        return "\n".join(self.voucher_lines)


class _RetryableResponse(Exception):
    pass


class GatewayClient:
    """Synchronous client for the gateway's XML-over-HTTP protocol."""

    PRE_REGISTER_PATH = "/action/v2-preregistro"
    PURCHASE_PATH = "/action/v2-procesar-compra-p2c"
    STATUS_PATH = "/action/v2-querystatus"

    def __init__(
        self,
        settings: GatewaySettings,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        self._settings = settings
        self._http = session or requests.Session()
        self._http.auth = (settings.username, settings.password)
        self._http.headers.update({"Content-Type": "text/xml"})
        self._sleep = sleep
        self._clock = clock
        self._logger = logger.bind(environment="live" if settings.live else "test")

    def pre_register(self) -> GatewaySession:
        """Obtain a control number for a new attempt.

        Raises:
            GatewayDeclineError: If the gateway refused to open the attempt.
            GatewayProtocolError: If no control number came back.
            GatewayTransportError: If the gateway was unreachable after every retry.
        """
        response = self._call(
            "pre_register",
            self.PRE_REGISTER_PATH,
            {"request": {"cod_afiliacion": self._settings.affiliation_code}},
        )
        control = response.get("control")
        if not control:
            raise GatewayProtocolError("Pre-registration returned no control number")
        code = response.get("codigo", "")
        if code != APPROVED_CODE:
            raise GatewayDeclineError(code or "??", response.get("descripcion") or "Pre-registration refused", control)
        self._logger.info("gateway_session_opened", control=control)
        return GatewaySession(control=control, opened_at=self._clock())

    def purchase(
        self,
        session: GatewaySession,
        payer: MobilePayer,
        amount,
        invoice: str,
        reference: str | None = None,
    ) -> PurchaseResult:
        """Charge the buyer's mobile account.

        Raises:
            ValidationError: If buyer data or amount is malformed (nothing was sent).
            GatewayDeclineError: If the bank declined. Never retried.
            GatewayTransportError: If the outcome is unknown after every retry.
        """
        payer = payer.normalized()
        formatted_amount = validators.format_amount(amount)
        reference = reference or self.new_reference()
        self._logger.info(
            "gateway_purchase_started",
            control=session.control,
            invoice=invoice,
            amount=formatted_amount,
            bank=validators.bank_name(payer.bank_code),
            national_id=validators.mask_national_id(payer.national_id),
        )
        response = self._call(
            "purchase",
            self.PURCHASE_PATH,
            {
                "request": {
                    "cod_afiliacion": self._settings.affiliation_code,
                    "control": session.control,
                    "telefonoCliente": payer.phone,
                    "codigobancoCliente": payer.bank_code,
                    "telefonoComercio": self._settings.commerce_phone,
                    "codigobancoComercio": self._settings.commerce_bank_code,
                    "amount": formatted_amount,
                    "factura": invoice,
                    "referencia": reference,
                    "cid": payer.national_id,
                }
            },
        )
        result = PurchaseResult(
            control=response.get("control") or session.control,
            response_code=response.get("codigo", ""),
            description=response.get("descripcion", ""),
            authorization_id=response.get("authid", ""),
            reference=response.get("referencia") or reference,
            invoice=response.get("factura") or invoice,
            amount=response.get("monto", ""),
            sequence=response.get("seqnum", ""),
            terminal=response.get("terminal", ""),
            lot=response.get("lote", ""),
            voucher_lines=tuple(wire.voucher_lines(response.get("voucher"))),
            raw=response,
        )
        if not result.approved:
            self._logger.info(
                "gateway_purchase_declined",
                control=result.control,
                code=result.response_code,
                description=result.description,
            )
            raise GatewayDeclineError(
                result.response_code or "??",
                result.description or "Declined",
                control=result.control,
                voucher=result.voucher,
            )
        self._logger.info(
            "gateway_purchase_approved",
            control=result.control,
            authorization_id=result.authorization_id,
        )
        return result

    def query_status(self, control: str, transaction_type: str = "P2C") -> StatusResult:
        """Return the gateway's final word on a control number."""
        if not control:
            raise GatewayProtocolError("Control number is required for a status query")
        response = self._call(
            "query_status",
            self.STATUS_PATH,
            {
                "request": {
                    "cod_afiliacion": self._settings.affiliation_code,
                    "control": control,
                    "version": "3",
                    "tipotrx": transaction_type,
                }
            },
        )
        result = StatusResult(
            control=response.get("control") or control,
            response_code=response.get("codigo", ""),
            description=response.get("descripcion", ""),
            state=response.get("estado", ""),
            authorization_id=response.get("authid", ""),
            reference=response.get("referencia", ""),
            amount=response.get("monto", ""),
            voucher_lines=tuple(wire.voucher_lines(response.get("voucher"))),
            raw=response,
        )
        self._logger.info("gateway_status_queried", control=control, code=result.response_code, state=result.state)
        return result

    def check_connection(self) -> GatewaySession:
        return self.pre_register()

    @staticmethod
    def supported_banks() -> list[tuple[str, str]]:
        return sorted(validators.BANKS.items())

    def new_invoice_number(self) -> str:
        now = timezone.localtime(self._clock())
        return f"{now:%Y%m%d%H%M%S}{secrets.randbelow(1000):03d}"

    def new_reference(self) -> str:
        return str(int(self._clock().timestamp() * 1000))[-8:]

    def _call(self, operation: str, path: str, tree: dict[str, Any]) -> dict[str, Any]:
        body = wire.encode(tree)
        self._logger.debug("gateway_request", operation=operation, path=path, payload=_redacted(tree))
        text = self._post_with_retry(operation, path, body)
        decoded = wire.decode(text)
        response = decoded.get("response")
        if not isinstance(response, dict):
            raise GatewayProtocolError(f"Empty {operation} response from gateway")
        self._logger.debug(
            "gateway_response",
            operation=operation,
            code=response.get("codigo", ""),
            description=response.get("descripcion", ""),
            control=response.get("control", ""),
            state=response.get("estado", ""),
        )
        return response

    def _post_with_retry(self, operation: str, path: str, body: bytes) -> str:
        url = f"{self._settings.base_url}{path}"
        attempts = max(1, self._settings.max_attempts)
        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                response = self._http.post(url, data=body, timeout=self._settings.timeout)
                if response.status_code >= 500:
                    raise _RetryableResponse(f"HTTP {response.status_code}")
                if response.status_code >= 400:
                    raise GatewayProtocolError(f"Gateway rejected {operation} with HTTP {response.status_code}")
                return response.text
            except (requests.Timeout, requests.ConnectionError, _RetryableResponse) as exc:
                last_error = str(exc) or exc.__class__.__name__
                self._logger.warning(
                    "gateway_attempt_failed",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=last_error,
                )
                if attempt < attempts:
                    self._sleep(self._settings.backoff_base * 2 ** (attempt - 1))
            except requests.RequestException as exc:
                # not transient, so fail on the first occurrence
                reason = str(exc) or exc.__class__.__name__
                self._logger.warning("gateway_request_failed", operation=operation, attempt=attempt, error=reason)
                raise GatewayTransportError(operation, attempt, reason) from exc
        raise GatewayTransportError(operation, attempts, last_error)


def _redacted(tree: dict[str, Any]) -> dict[str, Any]:
    request = dict(tree.get("request") or {})
    if request.get("cid"):
        request["cid"] = validators.mask_national_id(request["cid"])
    return request
