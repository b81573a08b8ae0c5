"""Integration tests for the Printer session over an in-memory transport"""
import pytest
from PIL import Image
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import RecordingTransport
from peripage_codec import hex_to_bytes
from peripage_printer import Printer
from peripage_profiles import A6, A6P, PrinterProfile
from peripage_protocol import RESET_FRAME, SETTLE_INTERVAL_SEC


@pytest.fixture
def printer(transport):
    return Printer(transport, A6)


class TestConnection:
    """Tests for connect/disconnect"""

    @pytest.mark.integration
    def test_connect_sends_reset_first(self, no_sleep):
        transport = RecordingTransport()
        printer = Printer(transport, A6)

        printer.connect()

        assert transport.is_connected
        assert transport.writes == [RESET_FRAME]
        assert no_sleep.call_count == 2
        no_sleep.assert_called_with(SETTLE_INTERVAL_SEC)

    @pytest.mark.integration
    def test_context_manager_disconnects(self, no_sleep):
        transport = RecordingTransport()

        with Printer(transport, A6) as printer:
            printer.feed(10)

        assert not transport.is_connected
        assert transport.writes == [RESET_FRAME, hex_to_bytes("1b4a0a")]

    @pytest.mark.integration
    def test_disconnect_when_closed_skips_settle(self, no_sleep):
        transport = RecordingTransport()
        Printer(transport, A6).disconnect()
        no_sleep.assert_not_called()

    @pytest.mark.integration
    def test_disconnect_releases_dropped_link(self, no_sleep):
        transport = RecordingTransport()
        printer = Printer(transport, A6)
        printer.connect()
        no_sleep.reset_mock()
        transport.connected = False

        printer.disconnect()

        assert transport.close_calls == 1
        no_sleep.assert_not_called()

    @pytest.mark.integration
    def test_reconnect_resets_again(self, no_sleep):
        transport = RecordingTransport()
        printer = Printer(transport, A6)
        printer.connect()
        printer.reconnect()

        assert transport.connect_calls == 2
        assert transport.writes == [RESET_FRAME, RESET_FRAME]

    @pytest.mark.integration
    def test_one_cursor_per_session(self, transport):
        printer = Printer(transport, A6P)
        assert printer.text.pending == ""
        assert printer.text.row_characters == A6P.row_characters
        assert printer.text.protocol is printer.protocol


class TestPrinting:
    """Tests for text, image and QR printing through the session"""

    @pytest.mark.integration
    def test_text_and_flush(self, printer, transport, no_sleep):
        printer.print_text("x" * 40)
        printer.flush()

        # A6 fits 32 characters per row
        assert transport.writes == [b"x" * 32, b"\n", b"x" * 8, b"\n"]

    @pytest.mark.integration
    def test_print_line(self, printer, transport, no_sleep):
        printer.print_line("hello")
        assert transport.writes == [b"hello", b"\n"]

    @pytest.mark.integration
    def test_print_image(self, printer, transport, no_sleep):
        printer.print_image(Image.new("L", (200, 10), 128))

        assert transport.writes[0] == RESET_FRAME
        assert transport.writes[1] == hex_to_bytes("1d76300030000a00")
        rows = transport.writes[2:]
        assert len(rows) == 10
        assert all(len(r) == A6.row_bytes for r in rows)

    @pytest.mark.integration
    def test_print_image_left_aligned(self, printer, transport, no_sleep):
        printer.print_image(Image.new("L", (8, 1), 0), align="left")
        assert transport.writes[2] == b"\xff" + bytes(47)

    @pytest.mark.integration
    def test_print_image_file(self, printer, transport, no_sleep, tmp_path):
        path = tmp_path / "logo.png"
        Image.new("RGB", (500, 100), (0, 0, 0)).save(path)

        printer.print_image_file(str(path))

        # 500 px scaled down to 384 keeps the 5:1 aspect ratio
        rows = transport.writes[2:]
        assert len(rows) == 76
        assert rows[0] == b"\xff" * 48

    @pytest.mark.integration
    def test_print_qr(self, printer, transport, no_sleep):
        printer.print_qr("https://example.com", size=200)

        rows = transport.writes[2:]
        assert len(rows) == 200
        assert any(any(r) for r in rows)

    @pytest.mark.integration
    def test_print_rows(self, printer, transport, no_sleep):
        printer.print_rows([b"\x01", b"\x02"])
        assert transport.writes[1] == hex_to_bytes("1d76300030000200")

    @pytest.mark.integration
    def test_print_image_bytes(self, printer, transport, no_sleep):
        printer.print_image_bytes(b"\x0f" * 96)
        assert transport.writes[2:] == [b"\x0f" * 48, b"\x0f" * 48]

    @pytest.mark.integration
    def test_wide_profile(self, transport, no_sleep):
        printer = Printer(transport, PrinterProfile("wide", 1848))
        printer.print_image(Image.new("L", (1848, 3), 255))
        assert [len(r) for r in transport.writes[2:]] == [231, 231, 231]


class TestConfigurationAndInfo:
    """Tests for forwarded configuration and info queries"""

    @pytest.mark.integration
    def test_set_concentration(self, printer, transport, no_sleep):
        printer.set_concentration(7)
        assert transport.writes == [hex_to_bytes("10ff100002")]

    @pytest.mark.integration
    def test_set_power_timeout(self, printer, transport, no_sleep):
        printer.set_power_timeout(120, wait=True)
        assert transport.writes == [hex_to_bytes("10ff120078")]

    @pytest.mark.integration
    def test_info_queries(self, printer, transport, no_sleep):
        transport.responses = [b"A6491571121", b"V2.11_304dpi", b"\x00\x54"]

        assert printer.get_serial_number() == "A6491571121"
        assert printer.get_firmware() == "V2.11_304dpi"
        assert printer.get_battery() == 84
        assert transport.writes == [
            hex_to_bytes("10ff20f2"),
            hex_to_bytes("10ff20f1"),
            hex_to_bytes("10ff50f1"),
        ]

    @pytest.mark.integration
    def test_remaining_queries(self, printer, transport, no_sleep):
        transport.responses = [b"PeriPage+DF7A", b"HW", b"MAC", b"IP-300"]

        assert printer.get_name() == "PeriPage+DF7A"
        assert printer.get_hardware() == "HW"
        assert printer.get_mac() == "MAC"
        assert printer.get_ip() == "IP-300"

    @pytest.mark.integration
    def test_full_info(self, printer, transport, no_sleep):
        transport.responses = [b"PeriPage+DF7A|00:F5|C5:12|V2.11|A649|84\x00"]
        info = printer.get_full_info()
        assert info.battery == 84
        assert info.firmware == "V2.11"
