from unittest import mock

from chipvm.__main__ import OPCODE_DELAY, build_parser, main


class FakeDisplay:
    """Stands in for the window, returning once the engine has stopped."""
    instances = []

    def __init__(self, framebuffer, keypad, shutdown, width, height, caption=""):
        self.shutdown = shutdown
        self.size = (width, height)
        self.caption = caption
        FakeDisplay.instances.append(self)

    def event_loop(self):
        self.shutdown.wait(5.0)


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.program is None, "Program should be picked with a dialog by default."
        assert args.scale is None, "Scale should default to the fixed window size."
        assert args.cycle_delay == OPCODE_DELAY, "Cycle delay default is incorrect."
        assert not args.debug, "Debug logging should be off by default."

    def test_options(self):
        args = build_parser().parse_args(["PONG.ch8", "-s", "10", "--cycle-delay", "0.01", "--debug"])
        assert args.program == "PONG.ch8", "Program path not parsed."
        assert args.scale == 10, "Scale not parsed."
        assert args.cycle_delay == 0.01, "Cycle delay not parsed."
        assert args.debug, "Debug flag not parsed."


class TestMain:
    def setup_method(self):
        FakeDisplay.instances = []

    def test_missing_program(self, tmp_path, capsys):
        assert main([str(tmp_path / "missing.ch8")]) == 1, "Missing program did not fail."
        assert "Error:" in capsys.readouterr().err, "Load failure was not reported."

    @mock.patch("chipvm.__main__.easygui")
    def test_dialog_dismissed(self, mock_easygui):
        mock_easygui.fileopenbox.return_value = None
        assert main([]) == 1, "Dismissed dialog did not fail."
        mock_easygui.msgbox.assert_called_once()

    @mock.patch("chipvm.__main__.easygui")
    def test_picked_program_fails_to_load(self, mock_easygui, tmp_path):
        path = tmp_path / "empty.ch8"
        path.write_bytes(b"")
        mock_easygui.fileopenbox.return_value = str(path)

        assert main([]) == 1, "Empty program did not fail."
        mock_easygui.msgbox.assert_called_once()
        assert mock_easygui.msgbox.call_args[0][1] == "Game Not Loaded", "Load failure was not shown to the player."

    @mock.patch("chipvm.display.Display", FakeDisplay)
    def test_engine_error_fails(self, tmp_path, capsys):
        path = tmp_path / "broken.ch8"
        path.write_bytes(bytes.fromhex("6001ffff"))

        assert main([str(path), "-s", "5", "-d", "0"]) == 1, "Engine error did not fail."
        assert "ffff" in capsys.readouterr().err, "Unknown opcode was not reported."
        display = FakeDisplay.instances[0]
        assert display.size == (320, 160), "Scaled window size is incorrect."
        assert display.caption == "broken", "Window not named after the program."

    def test_disassemble(self, tmp_path, capsys):
        path = tmp_path / "listing.ch8"
        path.write_bytes(bytes.fromhex("00e0ffff1200"))

        assert main([str(path), "--disassemble"]) == 0, "Listing a program failed."
        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "200: 00e0  CLS", "First instruction listed incorrectly."
        assert lines[1] == "202: ffff  ???", "Unknown word was not marked."
        assert lines[2].startswith("204: 1200  JP"), "Jump listed incorrectly."
        assert len(lines) == 3, "Memory past the program was listed."
