#!/usr/bin/env python3
from __future__ import annotations

import logging
import os
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, Mapping, Sequence, TextIO


CASE_INSENSITIVE_VAR = "CASE_INSENSITIVE"
DEBUG_VAR = "MINIGREP_DEBUG"
LOG_DIR_VAR = "MINIGREP_LOG_DIR"


# ----------------------------
# Errors
# ----------------------------
class MinigrepError(Exception):
    pass


class InsufficientArguments(MinigrepError):
    def __init__(self, message: str = "not enough arguments"):
        super().__init__(message)


class FileReadError(MinigrepError):
    def __init__(self, filename: str, cause: Exception):
        self.filename = filename
        self.cause = cause
        super().__init__(f"cannot read '{filename}': {cause}")


# ----------------------------
# Color helpers (stderr only)
# ----------------------------
ANSI_RESET = "\x1b[0m"
ANSI_RED = "\x1b[31m"


def supports_color(stream) -> bool:
    return hasattr(stream, "isatty") and stream.isatty()


def colorize(s: str, color: str, enabled: bool) -> str:
    return f"{color}{s}{ANSI_RESET}" if enabled else s


def eprint(msg: str, color: str | None = None) -> None:
    if color is not None:
        msg = colorize(msg, color, supports_color(sys.stderr))
    print(msg, file=sys.stderr)


# ----------------------------
# Config
# ----------------------------
@dataclass(frozen=True)
class Config:
    query: str
    filename: str
    case_sensitive: bool = True

    @classmethod
    def from_args(
        cls,
        args: Sequence[str],
        environ: Mapping[str, str] | None = None,
    ) -> "Config":
        """
        Build a Config from a raw argument list. args[0] is the program name.

        Only the presence of CASE_INSENSITIVE in the environment matters, its
        value is ignored. Pass `environ` to avoid reading os.environ.
        """
        if len(args) < 3:
            raise InsufficientArguments()

        if environ is None:
            environ = os.environ

        return cls(
            query=args[1],
            filename=args[2],
            case_sensitive=CASE_INSENSITIVE_VAR not in environ,
        )


# ----------------------------
# Stats
# ----------------------------
@dataclass
class Stats:
    lines_seen: int = 0
    lines_reported: int = 0
    elapsed_s: float = 0.0


# ----------------------------
# Search core
# ----------------------------
def iter_lines(contents: str) -> Iterator[str]:
    # "\n" separated, "\r" dropped only right before a "\n",
    # no empty line after a final "\n"
    parts = contents.split("\n")
    last = parts.pop()
    for part in parts:
        yield part[:-1] if part.endswith("\r") else part
    if last:
        yield last


def search(query: str, contents: str) -> list[str]:
    return [line for line in iter_lines(contents) if query in line]


def search_case_insensitive(query: str, contents: str) -> list[str]:
    folded = query.casefold()
    return [line for line in iter_lines(contents) if folded in line.casefold()]


# ----------------------------
# Runner
# ----------------------------
def read_contents(filename: str) -> str:
    try:
        with open(filename, "r", encoding="utf-8", newline="") as f:
            return f.read()
    except (OSError, UnicodeError) as ex:
        raise FileReadError(filename, ex) from ex


def run(
    config: Config,
    out: TextIO | None = None,
    stats: Stats | None = None,
) -> list[str]:
    if out is None:
        out = sys.stdout

    contents = read_contents(config.filename)

    if config.case_sensitive:
        results = search(config.query, contents)
    else:
        results = search_case_insensitive(config.query, contents)

    for line in results:
        out.write(line + "\n")

    if stats is not None:
        stats.lines_seen += sum(1 for _ in iter_lines(contents))
        stats.lines_reported += len(results)

    return results


# ----------------------------
# Logging
# ----------------------------
def make_log_path(log_dir: str) -> Path:
    """
    Create the log folder if needed and return a unique timestamp-based
    log filename inside it.
    """
    logs_dir = Path(log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    ts = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    return logs_dir / f"log_{ts}.txt"


def setup_logging(debug: bool, log_dir: str | None = None) -> tuple[logging.Logger, Path | None]:
    level = logging.DEBUG if debug else logging.INFO

    logger = logging.getLogger("minigrep")
    logger.setLevel(level)
    close_logging(logger)

    fmt = logging.Formatter("%(asctime)s %(levelname)s: %(message)s")

    log_path = None
    if log_dir:
        log_path = make_log_path(log_dir)
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    # Console handler for user-facing problems, stdout stays reserved for matches
    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(logging.WARNING)
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if log_path is not None:
        logger.info("Log started: %s", log_path)

    return logger, log_path


def close_logging(logger: logging.Logger) -> None:
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()


# ----------------------------
# CLI
# ----------------------------
def usage(prog: str) -> None:
    eprint(f"Usage: {prog} <query> <filename>")
    eprint(f"Set {CASE_INSENSITIVE_VAR} (any value) for a case-insensitive search.")


def detach_stdout() -> None:
    # Point stdout at devnull so the flush at interpreter exit cannot fail again
    try:
        fd = sys.stdout.fileno()
    except (AttributeError, OSError, ValueError):
        return
    devnull = os.open(os.devnull, os.O_WRONLY)
    os.dup2(devnull, fd)
    os.close(devnull)


def search_and_report(config: Config, logger: logging.Logger) -> int:
    stats = Stats()
    t0 = time.perf_counter()

    try:
        run(config, stats=stats)
        sys.stdout.flush()
        return 0

    except FileReadError as ex:
        logger.debug("Read failed: %r", ex.cause)
        eprint(f"Application error: {ex}", ANSI_RED)
        return 1

    except UnicodeEncodeError as ex:
        logger.debug("Write failed: %r", ex)
        eprint(f"Application error: cannot write match to stdout: {ex}", ANSI_RED)
        return 1

    except BrokenPipeError:
        logger.debug("Stdout closed by reader.")
        detach_stdout()
        return 141

    except KeyboardInterrupt:
        eprint("Interrupted.", ANSI_RED)
        return 130

    finally:
        stats.elapsed_s = time.perf_counter() - t0
        logger.info(
            "Performance: lines_seen=%d lines_reported=%d elapsed=%.6fs",
            stats.lines_seen,
            stats.lines_reported,
            stats.elapsed_s,
        )


def main(
    argv: Sequence[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> int:
    if argv is None:
        argv = sys.argv
    if environ is None:
        environ = os.environ

    logger, _ = setup_logging(DEBUG_VAR in environ, environ.get(LOG_DIR_VAR))
    try:
        logger.info("Args: %s", " ".join(argv))
        prog = Path(argv[0]).name if argv else "minigrep"

        try:
            config = Config.from_args(argv, environ)
        except InsufficientArguments as ex:
            logger.debug("Config failed: %s", ex)
            eprint(f"Problem parsing arguments: {ex}", ANSI_RED)
            usage(prog)
            return 2

        logger.info("Options: query=%r filename=%s case_sensitive=%s",
                    config.query, config.filename, config.case_sensitive)

        return search_and_report(config, logger)

    finally:
        close_logging(logger)


if __name__ == "__main__":
    raise SystemExit(main())
