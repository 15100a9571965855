import logging
import stat
from pathlib import Path

import pytest

from avn_bench_common import log

FAKE_COLLATOR = """\
#!/bin/sh
echo $$ >> "{calls}.pids"
for a in "$@"; do printf '%s\\t' "$a"; done >> "{calls}"
echo >> "{calls}"
echo "running benchmark $*"
pallet=""
prev=""
for a in "$@"; do
  if [ "$prev" = "--pallet" ]; then pallet="$a"; fi
  prev="$a"
done
case "$pallet" in
{cases}
esac
exit {default}
"""


class FakeCollator:
    """Shell script standing in for the collator; records every argv."""

    def __init__(self, path: Path, calls: Path):
        self.path = path
        self.calls_file = calls

    def calls(self) -> list[list[str]]:
        if not self.calls_file.exists():
            return []
        return [line.split("\t")[:-1]
                for line in self.calls_file.read_text().splitlines()]

    def pids(self) -> list[int]:
        pids = self.calls_file.with_name(self.calls_file.name + ".pids")
        if not pids.exists():
            return []
        return [int(p) for p in pids.read_text().split()]

    def pallets(self) -> list[str]:
        return [args[args.index("--pallet") + 1] for args in self.calls()]


@pytest.fixture
def make_collator(tmp_path):
    """Factory: make_collator(exit_codes={"pallet_x": 1}, sleep={"pallet_y": 30}, signals={"pallet_z": 35})."""

    def factory(exit_codes=None, sleep=None, signals=None, default=0, name="collator"):
        calls = tmp_path / f"{name}.calls"
        cases = []
        for crate, secs in (sleep or {}).items():
            cases.append(f"  {crate}) exec sleep {secs} ;;")
        for crate, signum in (signals or {}).items():
            cases.append(f"  {crate}) kill -{signum} $$ ;;")
        for crate, code in (exit_codes or {}).items():
            cases.append(f"  {crate}) exit {code} ;;")
        path = tmp_path / name
        path.write_text(FAKE_COLLATOR.format(
            calls=calls, cases="\n".join(cases), default=default))
        path.chmod(path.stat().st_mode | stat.S_IXUSR)
        return FakeCollator(path, calls)

    return factory


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()
    log.propagate = True
    log.setLevel(logging.NOTSET)
