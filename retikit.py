#!/usr/bin/env python3
"""
retikit — ReTI Toolkit
======================

One CLI for everything:
    retikit asm      — Assemble ReTI source to hex words (.retias) or a listing
    retikit disasm   — Disassemble hex words with optional field breakdown
    retikit run      — Run a program to completion and dump the machine state
    retikit debug    — Interactive line debugger

Usage:
    python retikit.py <command> [options]
    python retikit.py --help
    python retikit.py <command> --help

Examples:
    python retikit.py asm prog.reti -o prog.retias
    python retikit.py disasm --word 73FFFFFF --explain
    python retikit.py run prog.reti --data 5,7
    python retikit.py --os run kernel.reti --isr isr.reti --uart loop://
    python retikit.py debug prog.reti
"""

import argparse
import json
import logging
import os
import sys
import threading
from dataclasses import replace

__version__ = "0.4.0"

# Ensure our package is importable
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from reti_sim.config import ConfigError, ReTISettings, parse_radix, Variant
from reti_sim.log_setup import setup_logging

log = logging.getLogger("reti_sim.cli")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="retikit",
        description="ReTI Toolkit — assemble, disassemble, run, debug",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""commands:
  asm        Assemble ReTI source to hex words or a listing
  disasm     Disassemble hex words to ReTI mnemonics
  run        Run a program and dump registers + data memory
  debug      Interactive debugger (breakpoints, step over/out)
""",
    )
    parser.add_argument("--version", action="version", version=f"retikit {__version__}")
    parser.add_argument("--os", action="store_true", help="Use the extended (OS) instruction set")
    parser.add_argument("--radix", default=None, help="Display radix: decimal, hex or binary")
    parser.add_argument("--config", default=None, help="JSON settings file (version, number_style, ...)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More console logging")
    parser.add_argument("--log-dir", default=None, help="Also write a DEBUG log file here")
    sub = parser.add_subparsers(dest="command", metavar="command")

    # ── asm ──────────────────────────────────────────────────────────────
    p_asm = sub.add_parser("asm", help="Assemble ReTI source")
    p_asm.add_argument("input", help="Input source file")
    p_asm.add_argument("-o", "--output", help="Output file (.retias hex words or .lst listing)")
    p_asm.add_argument("--listing", action="store_true", help="Print listing to stdout")

    # ── disasm ───────────────────────────────────────────────────────────
    p_dis = sub.add_parser("disasm", help="Disassemble hex words")
    p_dis.add_argument("input", nargs="?", help="Input .retias file")
    p_dis.add_argument("--word", action="append", default=[], help="Single hex word (repeatable)")
    p_dis.add_argument("--explain", action="store_true", help="Show the field breakdown")

    # ── run ──────────────────────────────────────────────────────────────
    p_run = sub.add_parser("run", help="Run a program to completion")
    p_run.add_argument("input", help="Program (.reti source or .retias hex)")
    p_run.add_argument("--isr", help="Interrupt service routine source (OS)")
    p_run.add_argument("--data", default="", help="Initial data words, comma separated")
    p_run.add_argument("--max-steps", type=int, default=None, help="Instruction limit")
    p_run.add_argument("--uart", default=None, help="Bridge the UART to a serial port or pyserial URL (OS)")
    p_run.add_argument("--baud", type=int, default=9600, help="Serial baud rate for --uart")

    # ── debug ────────────────────────────────────────────────────────────
    p_dbg = sub.add_parser("debug", help="Interactive debugger")
    p_dbg.add_argument("input", help="Program (.reti source or .retias hex)")
    p_dbg.add_argument("--isr", help="Interrupt service routine source (OS)")
    p_dbg.add_argument("--data", default="", help="Initial data words, comma separated")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    console_level = logging.WARNING - 10 * min(args.verbose, 2)
    setup_logging("reti_sim", console_level=console_level, log_dir=args.log_dir)

    try:
        settings = _settings(args)
    except (ConfigError, OSError, json.JSONDecodeError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    handler = {
        "asm": cmd_asm,
        "disasm": cmd_disasm,
        "run": cmd_run,
        "debug": cmd_debug,
    }[args.command]
    return handler(args, settings) or 0


def _settings(args) -> ReTISettings:
    settings = ReTISettings()
    if args.config:
        with open(args.config, "r", encoding="utf-8") as f:
            settings = ReTISettings.from_mapping(json.load(f))
    if args.os:
        settings = settings.with_variant(Variant.OS)
    if args.radix:
        settings = replace(settings, radix=parse_radix(args.radix))
    return settings


def _parse_data(text: str):
    from reti_sim.bits import parse_number
    words = []
    for item in filter(None, (s.strip() for s in text.split(","))):
        value = parse_number(item)
        if value is None:
            raise ValueError(f"bad data word '{item}'")
        words.append(value)
    return words


def _read(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


# ── asm ──────────────────────────────────────────────────────────────────
def cmd_asm(args, settings):
    from reti_sim.bits import word_to_hex
    from reti_sim.isa import isa_for
    from reti_sim.loader import build_source_map
    from reti_sim.parser import decode_source

    source, error = build_source_map(decode_source(_read(args.input)),
                                     isa_for(settings.variant), args.input, settings.comment)
    if error is not None:
        print(f"Assembly error: {error}", file=sys.stderr)
        if error.text:
            print(f"    {error.text.strip()}", file=sys.stderr)
        return 1

    listing = "\n".join(
        f"{instr:5d}  {word_to_hex(word)}  {source.lines[source.instr_to_line[instr]].strip()}"
        for instr, word in enumerate(source.words))

    if args.listing or not args.output:
        print(listing)
        return 0

    with open(args.output, "w", encoding="utf-8") as f:
        if args.output.lower().endswith(".lst"):
            f.write(listing + "\n")
        else:
            f.write("\n".join(word_to_hex(w) for w in source.words) + "\n")
    print(f"Assembled {len(source.words)} instructions -> {args.output}")
    return 0


# ── disasm ───────────────────────────────────────────────────────────────
def cmd_disasm(args, settings):
    from reti_sim.disassembler import decode
    from reti_sim.isa import isa_for
    from reti_sim.parser import decode_source, parse_hex_words

    try:
        words = parse_hex_words(" ".join(args.word))
        if args.input:
            words += parse_hex_words(decode_source(_read(args.input)))
    except ValueError as e:
        print(f"Disassembly error: {e}", file=sys.stderr)
        return 1

    isa = isa_for(settings.variant)
    for k, word in enumerate(words):
        decoded = decode(word, isa)
        print(f"{k:5d}  {word:08x}  {decoded.text}")
        if args.explain:
            for name, width, value in decoded.fields:
                print(f"         {name:<10} {width:>2} bits  {value}")
    return 0


# ── run ──────────────────────────────────────────────────────────────────
def cmd_run(args, settings):
    from reti_sim.emu import StopReason
    from reti_sim.loader import load_program

    try:
        data = _parse_data(args.data)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    isr = _read(args.isr) if args.isr else None
    result = load_program(_read(args.input), settings, isr, data,
                          name=args.input, isr_name=args.isr or "")
    if not result.ok:
        print(f"Assembly error: {result.error}", file=sys.stderr)
        return 1

    cpu = result.program.cpu
    bridge = None
    if args.uart:
        if cpu.uart is None:
            print("--uart needs the OS variant (--os)", file=sys.stderr)
            return 1
        from reti_sim.periph.serial_bridge import SerialBridge
        bridge = SerialBridge.open(cpu.uart, args.uart, args.baud)

    try:
        reason = cpu.run(max_steps=args.max_steps, on_step=bridge.pump if bridge else None)
    finally:
        if bridge is not None:
            bridge.close()

    print(cpu.dump_state())
    if cpu.uart is not None and cpu.uart.tx_buffer and bridge is None:
        print(f"UART output: {bytes(cpu.uart.tx_buffer)!r}")
    return 0 if reason in (StopReason.END, StopReason.HALT) else 1


# ── debug ────────────────────────────────────────────────────────────────
DEBUG_HELP = """commands:
  s | step            execute one instruction
  n | next            step over calls
  o | out             step out of the current call
  c | continue        run to the next breakpoint (Ctrl-C pauses)
  b LINE              set breakpoint (1-based line)
  d LINE              delete breakpoint
  p EXPR              print register or memory word (p ACC, p 0x10)
  set REG VALUE       write a register
  regs                show all registers
  mem START COUNT     show data memory
  dis [START COUNT]   disassemble program words
  q | quit            exit"""


def _print_events(rt, show_line=True):
    from reti_sim.runtime import EventKind, RunState
    for event in rt.drain_events():
        if event.kind is EventKind.OUTPUT:
            print(event.text, end="" if event.text.endswith("\n") else "\n")
        elif event.kind is EventKind.END:
            print("Program terminated" + (f": {event.text}" if event.text else ""))
        elif event.kind is EventKind.BREAKPOINT_VALIDATED:
            log.debug("breakpoint %d verified at line %d", event.breakpoint.id, event.breakpoint.line + 1)
        else:
            print(f"[{event.kind.value}]" + (f" {event.text}" if event.text else ""))
    if show_line and rt.program is not None and rt.state is RunState.STOPPED:
        path, line = rt.get_source_for_pc()
        source = rt.program.isr if rt.in_isr and rt.program.isr else rt.program.main
        print(f"{os.path.basename(path)}:{line + 1}  {source.lines[line].strip()}")


def _run_cancellable(fn):
    """Run a controller request in a worker thread; Ctrl-C cancels it."""
    from reti_sim.cancellation import CancellationToken
    token = CancellationToken()
    worker = threading.Thread(target=fn, args=(token,), daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(0.1)
        except KeyboardInterrupt:
            token.cancel()


def cmd_debug(args, settings):
    from reti_sim.runtime import LocalFileAccessor, ReTIRuntime

    try:
        data = _parse_data(args.data)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    rt = ReTIRuntime(LocalFileAccessor(), settings)
    ok = rt.start(args.input, stop_on_entry=True, isr_program=args.isr, data=tuple(data))
    _print_events(rt)
    if not ok:
        return 1
    print("Type 'help' for commands.")

    while True:
        try:
            line = input("(reti) ").strip()
        except EOFError:
            break
        if not line:
            continue
        cmd, *rest = line.split()
        cmd = cmd.lower()

        if cmd in ("q", "quit", "exit"):
            break
        elif cmd == "help":
            print(DEBUG_HELP)
        elif cmd in ("s", "step"):
            rt.step()
        elif cmd in ("n", "next"):
            _run_cancellable(rt.step_over)
        elif cmd in ("o", "out"):
            _run_cancellable(rt.step_out)
        elif cmd in ("c", "continue"):
            _run_cancellable(rt.continue_)
        elif cmd in ("b", "d") and rest and rest[0].isdigit():
            path = rt.current_file or rt.source_file
            if cmd == "b":
                bp = rt.set_breakpoint(path, int(rest[0]) - 1)
                print(f"Breakpoint {bp.id} at line {bp.line + 1}"
                      + ("" if bp.verified else " (unverified)"))
            elif rt.clear_breakpoint(path, int(rest[0]) - 1) is None:
                print("No breakpoint on that line")
        elif cmd == "p" and rest:
            var = rt.evaluate(rest[0])
            print(f"{var.name} = {var.display}" if var else "Cannot evaluate")
        elif cmd == "set" and len(rest) == 2:
            var = rt.set_register(rest[0], rest[1])
            print(f"{var.name} = {var.display}" if var else "Cannot set register")
        elif cmd == "regs":
            for var in rt.get_local_variables():
                print(f"  {var.name:<4} {var.display}")
        elif cmd == "mem" and len(rest) == 2:
            from reti_sim.bits import format_word, parse_number
            start, count = parse_number(rest[0]), parse_number(rest[1])
            if start is None or count is None:
                print("usage: mem START COUNT")
                continue
            for k, value in enumerate(rt.get_memory_chunk(start, count)):
                print(f"  [{start + k}] {format_word(value, int(settings.radix))}")
        elif cmd == "dis":
            from reti_sim.bits import parse_number
            start = parse_number(rest[0]) if rest else 0
            count = parse_number(rest[1]) if len(rest) > 1 else 16
            if start is None or count is None:
                print("usage: dis [START COUNT]")
                continue
            for ins in rt.disassemble(start, count):
                print(f"  {ins.address:#010x}  {ins.instruction}")
        else:
            print("Unknown command, type 'help'")
            continue
        _print_events(rt, show_line=cmd in ("s", "step", "n", "next", "o", "out", "c", "continue", "set"))
    return 0


if __name__ == "__main__":
    sys.exit(main())
