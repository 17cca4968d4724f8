"""
CLI tests for retikit.

Each command runs in-process through ``retikit.main(argv)`` on files in a
pytest tmp_path.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json

import retikit


PROGRAM = "LOADI ACC 5 ; five\nADDI ACC 2\nSTORE 0\n"


def write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


class TestAsmDisasm:
    """asm / disasm commands."""

    def test_asm_to_retias(self, tmp_path):
        src = write(tmp_path, "prog.reti", PROGRAM)
        out = str(tmp_path / "prog.retias")
        assert retikit.main(["asm", src, "-o", out]) == 0
        with open(out, encoding="utf-8") as f:
            assert f.read().split() == ["73000005", "0f000002", "80000000"]

    def test_asm_listing(self, tmp_path, capsys):
        src = write(tmp_path, "prog.reti", PROGRAM)
        assert retikit.main(["asm", src, "--listing"]) == 0
        out = capsys.readouterr().out
        assert "73000005  LOADI ACC 5 ; five" in out

    def test_asm_error(self, tmp_path, capsys):
        src = write(tmp_path, "bad.reti", "LOADI ACC 1\nFROB\n")
        assert retikit.main(["asm", src]) == 1
        assert ":2: Unknown instruction 'FROB'" in capsys.readouterr().err

    def test_disasm_words(self, capsys):
        assert retikit.main(["disasm", "--word", "73FFFFFF", "--explain"]) == 0
        out = capsys.readouterr().out
        assert "LOADI ACC -1" in out
        assert "Type" in out

    def test_disasm_os(self, capsys):
        assert retikit.main(["--os", "disasm", "--word", "C4000000"]) == 0
        assert "RTI" in capsys.readouterr().out

    def test_disasm_bad_hex(self, capsys):
        assert retikit.main(["disasm", "--word", "XYZ"]) == 1


class TestRun:
    """run command."""

    def test_run_ti(self, tmp_path, capsys):
        src = write(tmp_path, "prog.reti", PROGRAM)
        assert retikit.main(["run", src]) == 0
        out = capsys.readouterr().out
        assert "ACC  7" in out
        assert "[0] 7" in out

    def test_run_with_data_and_radix(self, tmp_path, capsys):
        src = write(tmp_path, "prog.reti", "LOAD ACC 1\nSTORE 2\n")
        assert retikit.main(["--radix", "hex", "run", src, "--data", "0,0x2A"]) == 0
        assert "[2] 0x0000002A" in capsys.readouterr().out

    def test_run_timeout_fails(self, tmp_path):
        src = write(tmp_path, "loop.reti", "JUMP 1\nJUMP -1\n")
        assert retikit.main(["run", src, "--max-steps", "20"]) == 1

    def test_run_os_config_file(self, tmp_path, capsys):
        src = write(tmp_path, "prog.reti", "LOADI SP 3\n")
        cfg = write(tmp_path, "settings.json", json.dumps({"version": "Extended ReTI (OS)"}))
        assert retikit.main(["--config", cfg, "run", src]) == 0
        assert "SP   3" in capsys.readouterr().out

    def test_run_os_uart_bridge(self, tmp_path):
        src = write(tmp_path, "prog.reti", "NOP\n")
        assert retikit.main(["--os", "run", src, "--uart", "loop://"]) == 0

    def test_uart_needs_os(self, tmp_path):
        src = write(tmp_path, "prog.reti", "NOP\n")
        assert retikit.main(["run", src, "--uart", "loop://"]) == 1

    def test_bad_config(self, tmp_path):
        src = write(tmp_path, "prog.reti", "NOP\n")
        cfg = write(tmp_path, "settings.json", json.dumps({"version": "ReTI 9"}))
        assert retikit.main(["--config", cfg, "run", src]) == 2


class TestDebug:
    """debug REPL driven by a scripted input()."""

    def test_session(self, tmp_path, capsys, monkeypatch):
        src = write(tmp_path, "prog.reti", PROGRAM)
        commands = iter(["b 3", "c", "p ACC", "regs", "mem 0 1", "s", "q"])
        monkeypatch.setattr("builtins.input", lambda _prompt="": next(commands))
        assert retikit.main(["debug", src]) == 0
        out = capsys.readouterr().out
        assert "Breakpoint 1 at line 3" in out
        assert "[stopOnBreakpoint]" in out
        assert "ACC = 7" in out
        assert "Program terminated" in out

    def test_eof_exits(self, tmp_path, monkeypatch):
        src = write(tmp_path, "prog.reti", PROGRAM)

        def eof(_prompt=""):
            raise EOFError

        monkeypatch.setattr("builtins.input", eof)
        assert retikit.main(["debug", src]) == 0

    def test_bad_numbers_keep_session_alive(self, tmp_path, capsys, monkeypatch):
        src = write(tmp_path, "prog.reti", PROGRAM)
        commands = iter(["dis x", "mem 0 y", "dis 0 2", "q"])
        monkeypatch.setattr("builtins.input", lambda _prompt="": next(commands))
        assert retikit.main(["debug", src]) == 0
        out = capsys.readouterr().out
        assert "usage: dis [START COUNT]" in out
        assert "usage: mem START COUNT" in out
        assert "LOADI ACC 5" in out
