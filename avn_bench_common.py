"""
Shared infrastructure for the AvN pallet benchmark runner.

Used by avn_bench.py (runner + CLI) and the tests under tests/.
"""

import json
import logging
import subprocess
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional


# CONFIGURATION

DEFAULT_BINARY = "target/release/avn-parachain-collator"
DEFAULT_TEMPLATE = "./.maintain/frame-weight-template.hbs"
LOG_DIR = Path("target/bench-logs")
DEFAULT_TIMEOUT_SEC = 3 * 60 * 60
WEIGHTS_FILE = "src/default_weights.rs"
PALLETS_DIR = "pallets"

DEFAULT_PALLETS = (
    "pallets/authors-manager",
    "pallets/avn",
    "pallets/avn-anchor",
    "pallets/avn-offence-handler",
    "pallets/avn-proxy",
    "pallets/avn-transaction-payment",
    "pallets/cross-chain-voting",
    "pallets/eth-bridge",
    "pallets/ethereum-events",
    "pallets/nft-manager",
    "pallets/parachain-staking",
    "pallets/summary",
    "pallets/token-manager",
    "pallets/validators-manager",
)

# Everything after `benchmark pallet` except --pallet/--output/--template
BENCH_ARGS = (
    "--chain", "dev",
    "--extrinsic", "*",
    "--steps", "50",
    "--repeat", "20",
    "--wasm-execution", "compiled",
    "--heap-pages", "4096",
)

log: logging.Logger = logging.getLogger("avn-bench")


class ConfigError(ValueError):
    """Raised for registry/CLI configuration problems found before any run."""


# =============================================================================
# NAMING
# =============================================================================

def crate_name(pallet: str) -> str:
    """Map a pallet path to its crate name.

    >>> crate_name("pallets/eth-bridge")
    'pallet_eth_bridge'
    >>> crate_name("pallets/avn")
    'pallet_avn'
    """
    folder = pallet.rstrip("/").split("/")[-1]
    return "pallet_" + folder.replace("-", "_")


def output_path(pallet: str) -> str:
    """Where the collator writes the generated weights for `pallet`."""
    return f"{pallet.rstrip('/')}/{WEIGHTS_FILE}"


@dataclass(frozen=True)
class BenchmarkInvocation:
    """One `benchmark pallet` call, built from a registry entry."""

    pallet: str
    binary: str = DEFAULT_BINARY
    template: str = DEFAULT_TEMPLATE

    @property
    def crate(self) -> str:
        return crate_name(self.pallet)

    @property
    def output(self) -> str:
        return output_path(self.pallet)

    def command(self) -> list[str]:
        return [
            str(self.binary), "benchmark", "pallet",
            *BENCH_ARGS[:2],
            "--pallet", self.crate,
            *BENCH_ARGS[2:],
            "--output", self.output,
            "--template", str(self.template),
        ]


# =============================================================================
# REGISTRY
# =============================================================================

def normalize_entry(entry: str) -> str:
    """Bare names (`eth-bridge`) are expanded to `pallets/eth-bridge`."""
    entry = entry.strip().rstrip("/")
    if entry and "/" not in entry:
        entry = f"{PALLETS_DIR}/{entry}"
    return entry


def dedup(entries: Iterable[str]) -> tuple[str, ...]:
    """Drop empty and repeated entries, keeping first-seen order."""
    seen = []
    for entry in entries:
        entry = normalize_entry(entry)
        if not entry:
            continue
        if entry in seen:
            log.warning(f"Duplicate registry entry '{entry}' ignored")
            continue
        seen.append(entry)
    return tuple(seen)


def load_registry(path: Path) -> tuple[str, ...]:
    """Read a registry file: one pallet path per line, or a JSON list."""
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigError(f"Cannot read registry {path}: {e}") from e

    if path.suffix == ".json":
        try:
            entries = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"[{path}] Invalid JSON: {e}") from e
        if not isinstance(entries, list) or not all(isinstance(e, str) for e in entries):
            raise ConfigError(f"[{path}] Expected a JSON list of pallet paths")
    else:
        entries = []
        for line in text.splitlines():
            # strip comments
            line = line.split("#", 1)[0].strip()
            if line:
                entries.append(line)

    return dedup(entries)


def start_from(registry: Iterable[str], start: Optional[str]) -> tuple[str, ...]:
    """Skip entries which come before `start` (a path, bare name or crate)."""
    registry = tuple(registry)
    if not start:
        return registry
    want = normalize_entry(start)
    for idx, entry in enumerate(registry):
        if entry == want or crate_name(entry) == start:
            return registry[idx:]
    raise ConfigError(f"--start specified non-existent pallet {start}")


# =============================================================================
# LOGGING
# =============================================================================

class _TimestampFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("[%H:%M:%S]")
        level = f"[{record.levelname}]"
        return f"{stamp} {level:<8} {record.getMessage()}"


def setup_logging(verbose: bool = False, log_dir: Optional[Path] = None) -> Optional[Path]:
    """Console logging, plus a timestamped run log under `log_dir` if given."""
    log.setLevel(logging.DEBUG)
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()
    log.propagate = False

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(_TimestampFormatter())
    log.addHandler(console_handler)

    if log_dir is None:
        return None

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
    log_path = log_dir / f"run-{timestamp}.log"

    file_handler = logging.FileHandler(log_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    log.addHandler(file_handler)
    return log_path


def get_git_info() -> dict:
    """Return git commit hash and dirty status of the working tree."""
    info = {"commit": "unknown", "dirty": False}
    try:
        r = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True, text=True,
        )
        if r.returncode != 0:
            return info
        info["commit"] = r.stdout.strip()
        r = subprocess.run(
            ["git", "diff", "--quiet", "HEAD"],
            capture_output=True,
        )
        info["dirty"] = r.returncode != 0
    except FileNotFoundError:
        pass
    return info
