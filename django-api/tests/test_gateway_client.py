"""Tests for the P2C gateway client, its wire codec and buyer-data validators.

The HTTP session is a mock; no request leaves the process.
Run with: pytest tests/test_gateway_client.py -v
"""

import xml.etree.ElementTree as ET
from decimal import Decimal
from unittest.mock import Mock

import pytest
import requests
from structlog.testing import capture_logs

from reservations.domain.errors import (
    GatewayDeclineError,
    GatewayProtocolError,
    GatewayTransportError,
    ValidationError,
)
from reservations.gateway import GatewaySession, MobilePayer, validators, wire

PAYER = MobilePayer(phone="0414-555.12.34", bank_code="0134", national_id="12345678")


def _sent(http, call: int = 0) -> tuple[str, ET.Element]:
    args, kwargs = http.post.call_args_list[call]
    return args[0], ET.fromstring(kwargs["data"])


@pytest.fixture
def session(clock) -> GatewaySession:
    return GatewaySession(control="ABC123", opened_at=clock())


class TestPreRegister:
    """Tests for GatewayClient.pre_register."""

    def test_returns_control_number(self, gateway, http, gateway_response):
        http.post.return_value = gateway_response(codigo="00", control="ABC123", descripcion="OK")
        session = gateway.pre_register()
        assert session.control == "ABC123"
        url, body = _sent(http)
        assert url == "https://paytest.example.com/action/v2-preregistro"
        assert body.tag == "request"
        assert body.findtext("cod_afiliacion") == "20250101"

    def test_uses_basic_auth_and_xml(self, gateway, http):
        assert http.auth == ("merchant", "secret")
        assert http.headers["Content-Type"] == "text/xml"

    def test_missing_control_is_protocol_error(self, gateway, http, gateway_response):
        http.post.return_value = gateway_response(codigo="00", descripcion="OK")
        with pytest.raises(GatewayProtocolError):
            gateway.pre_register()

    def test_refusal_is_decline(self, gateway, http, gateway_response):
        http.post.return_value = gateway_response(codigo="99", control="X1", descripcion="Afiliacion invalida")
        with pytest.raises(GatewayDeclineError) as exc_info:
            gateway.pre_register()
        assert exc_info.value.response_code == "99"


class TestPurchase:
    """Tests for GatewayClient.purchase."""

    def test_approved_purchase(self, gateway, http, session, sleep, gateway_response):
        http.post.return_value = gateway_response(
            codigo="00",
            descripcion="APROBADA",
            control="ABC123",
            authid="778899",
            referencia="000123",
            voucher={"linea": ["  COMERCIO DEMO  ", "MONTO: 1000.00", ""]},
        )
        result = gateway.purchase(session, PAYER, Decimal("1000"), "INV-1", reference="REF-1")
        assert result.approved
        assert result.authorization_id == "778899"
        assert result.voucher == "  COMERCIO DEMO  \nMONTO: 1000.00\n"
        assert http.post.call_count == 1
        sleep.assert_not_called()

        url, body = _sent(http)
        assert url.endswith("/action/v2-procesar-compra-p2c")
        assert body.findtext("control") == "ABC123"
        assert body.findtext("telefonoCliente") == "04145551234"
        assert body.findtext("codigobancoCliente") == "0134"
        assert body.findtext("cid") == "V12345678"
        assert body.findtext("amount") == "1000.00"
        assert body.findtext("telefonoComercio") == "04141234567"
        assert body.findtext("codigobancoComercio") == "0105"
        assert body.findtext("factura") == "INV-1"
        assert body.findtext("referencia") == "REF-1"

    def test_decline_is_raised_and_never_retried(self, gateway, http, session, sleep, gateway_response):
        http.post.return_value = gateway_response(codigo="05", descripcion="FONDOS INSUFICIENTES", control="ABC123")
        with pytest.raises(GatewayDeclineError) as exc_info:
            gateway.purchase(session, PAYER, "50.00", "INV-2")
        assert exc_info.value.response_code == "05"
        assert exc_info.value.control == "ABC123"
        assert http.post.call_count == 1
        sleep.assert_not_called()

    def test_invalid_payer_is_rejected_before_sending(self, gateway, http, session):
        payer = MobilePayer(phone="02125551234", bank_code="0134", national_id="12345678")
        with pytest.raises(ValidationError):
            gateway.purchase(session, payer, "50.00", "INV-3")
        http.post.assert_not_called()

    def test_reference_generated_when_missing(self, gateway, http, session, gateway_response):
        http.post.return_value = gateway_response(codigo="00", descripcion="APROBADA", control="ABC123")
        gateway.purchase(session, PAYER, "50.00", "INV-4")
        _, body = _sent(http)
        assert body.findtext("referencia")


class TestRetry:
    """Only transport failures are retried."""

    def test_timeouts_retry_with_growing_delay(self, gateway, http, sleep):
        http.post.side_effect = requests.Timeout("read timed out")
        with pytest.raises(GatewayTransportError) as exc_info:
            gateway.pre_register()
        assert http.post.call_count == 3
        assert exc_info.value.attempts == 3
        delays = [call.args[0] for call in sleep.call_args_list]
        assert delays == [1.0, 2.0]

    def test_recovers_after_connection_error(self, gateway, http, sleep, gateway_response):
        http.post.side_effect = [
            requests.ConnectionError("reset"),
            gateway_response(codigo="00", control="ABC123"),
        ]
        assert gateway.pre_register().control == "ABC123"
        assert sleep.call_count == 1

    def test_server_errors_are_retried(self, gateway, http, gateway_response):
        http.post.side_effect = [
            gateway_response(status_code=503),
            gateway_response(status_code=502),
            gateway_response(codigo="00", control="ABC123"),
        ]
        assert gateway.pre_register().control == "ABC123"
        assert http.post.call_count == 3

    def test_client_errors_are_not_retried(self, gateway, http, sleep, gateway_response):
        http.post.return_value = gateway_response(status_code=401)
        with pytest.raises(GatewayProtocolError):
            gateway.pre_register()
        assert http.post.call_count == 1
        sleep.assert_not_called()

    def test_other_request_failures_are_not_retried(self, gateway, http, session, sleep):
        """A response that breaks mid-body fails once, as a transport error, with no retry."""
        http.post.side_effect = requests.exceptions.ChunkedEncodingError("Connection broken: IncompleteRead")
        with pytest.raises(GatewayTransportError) as exc_info:
            gateway.purchase(session, PAYER, "50.00", "INV-5")
        assert exc_info.value.attempts == 1
        assert "IncompleteRead" in exc_info.value.reason
        assert http.post.call_count == 1
        sleep.assert_not_called()

    def test_malformed_body_is_protocol_error(self, gateway, http):
        http.post.return_value = Mock(status_code=200, text="<response><codigo>")
        with pytest.raises(GatewayProtocolError):
            gateway.pre_register()


class TestQueryStatus:
    """Tests for GatewayClient.query_status."""

    def test_status_query_payload(self, gateway, http, gateway_response):
        http.post.return_value = gateway_response(codigo="00", descripcion="APROBADA", estado="A", authid="42")
        result = gateway.query_status("ABC123")
        assert result.approved
        assert result.authorization_id == "42"
        url, body = _sent(http)
        assert url.endswith("/action/v2-querystatus")
        assert body.findtext("version") == "3"
        assert body.findtext("tipotrx") == "P2C"

    def test_only_final_states_settle(self, gateway, http, gateway_response):
        http.post.return_value = gateway_response(codigo="09", descripcion="EN PROCESO", estado="P")
        result = gateway.query_status("ABC123")
        assert not result.approved
        assert not result.declined
        assert not result.settled

    def test_declined_state(self, gateway, http, gateway_response):
        http.post.return_value = gateway_response(codigo="00", estado="R")
        result = gateway.query_status("ABC123")
        assert result.declined
        assert not result.approved

    def test_control_is_required(self, gateway):
        with pytest.raises(GatewayProtocolError):
            gateway.query_status("")


class TestRequestLogging:
    """Each gateway call is logged at debug level without the buyer's full national ID."""

    def test_request_and_response_are_logged_masked(self, gateway, http, session, gateway_response):
        http.post.return_value = gateway_response(codigo="00", descripcion="APROBADA", control="ABC123")
        with capture_logs() as logs:
            gateway.purchase(session, PAYER, "50.00", "INV-6")

        [request] = [entry for entry in logs if entry["event"] == "gateway_request"]
        [response] = [entry for entry in logs if entry["event"] == "gateway_response"]
        assert request["log_level"] == "debug"
        assert request["operation"] == "purchase"
        assert request["payload"]["cid"] == "V*****678"
        assert request["payload"]["telefonoCliente"] == "04145551234"
        assert response["code"] == "00"
        assert response["control"] == "ABC123"
        assert "V12345678" not in repr(logs)


class TestHelpers:
    def test_supported_banks(self, gateway):
        banks = dict(gateway.supported_banks())
        assert len(banks) == 25
        assert banks["0134"] == "Banesco"

    def test_invoice_numbers_start_with_local_timestamp(self, gateway):
        invoice = gateway.new_invoice_number()
        assert len(invoice) == 17
        assert invoice.isdigit()


class TestWire:
    """Tests for the XML codec."""

    def test_encode_skips_none_and_repeats_lists(self):
        payload = wire.encode({"request": {"a": "1", "b": None, "linea": ["x", "y"]}})
        assert payload == b"<request><a>1</a><linea>x</linea><linea>y</linea></request>"

    def test_decode_collects_repeated_tags(self):
        decoded = wire.decode("<response><codigo>00</codigo><voucher><linea>A</linea><linea/></voucher></response>")
        assert decoded == {"response": {"codigo": "00", "voucher": {"linea": ["A", ""]}}}

    def test_single_voucher_line(self):
        assert wire.voucher_lines({"linea": "ONLY"}) == ["ONLY"]

    def test_decode_rejects_garbage(self):
        with pytest.raises(GatewayProtocolError):
            wire.decode("not xml")


class TestValidators:
    """Tests for buyer data normalization."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("04141234567", "04141234567"),
            ("4141234567", "04141234567"),
            ("+58 424 123 4567", "04241234567"),
            ("0416-123-45-67", "04161234567"),
        ],
    )
    def test_phone_normalization(self, raw, expected):
        assert validators.normalize_phone(raw) == expected

    @pytest.mark.parametrize("raw", ["", "02121234567", "0414123"])
    def test_invalid_phones(self, raw):
        with pytest.raises(ValidationError):
            validators.normalize_phone(raw)

    @pytest.mark.parametrize(
        "raw, expected",
        [("12345678", "V12345678"), ("e1234567", "E1234567"), ("V-12.345.678", "V12345678")],
    )
    def test_national_id_normalization(self, raw, expected):
        assert validators.normalize_national_id(raw) == expected

    def test_invalid_national_id(self):
        with pytest.raises(ValidationError):
            validators.normalize_national_id("123")

    def test_unknown_bank(self):
        with pytest.raises(ValidationError):
            validators.validate_bank_code("9999")

    def test_amount_formatting(self):
        assert validators.format_amount(Decimal("10.005")) == "10.01"
        with pytest.raises(ValidationError):
            validators.format_amount("0")

    def test_masking(self):
        assert validators.mask_national_id("V12345678") == "V*****678"
