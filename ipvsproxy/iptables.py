"""A small wrapper around the iptables command line tool."""

from __future__ import annotations

import re
import subprocess
from typing import Callable, List, Optional, Sequence, Tuple

Runner = Callable[[Sequence[str]], "subprocess.CompletedProcess[str]"]

_RANDOM_FULLY_MIN_VERSION = (1, 6, 2)
_VERSION_RE = re.compile(r"v(\d+)\.(\d+)\.(\d+)")


class IptablesError(Exception):
    """An iptables command exited with an unexpected status."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        super().__init__(
            f"running {' '.join(self.argv)!r} failed: exit status {returncode}: {self.stderr}"
        )


def _run_subprocess(argv: Sequence[str]) -> "subprocess.CompletedProcess[str]":
    return subprocess.run(list(argv), capture_output=True, text=True, check=False)


class Iptables:
    """Runs iptables commands against one binary, through a replaceable runner."""

    def __init__(self, binary: str = "iptables", runner: Optional[Runner] = None) -> None:
        self.binary = binary
        self._runner = runner or _run_subprocess
        self._random_fully: Optional[bool] = None

    def _run(
        self, *args: str, allowed: Tuple[int, ...] = (0,)
    ) -> "subprocess.CompletedProcess[str]":
        argv = [self.binary, *args]
        result = self._runner(argv)
        if result.returncode not in allowed:
            raise IptablesError(argv, result.returncode, result.stderr or "")
        return result

    def exists(self, table: str, chain: str, *args: str) -> bool:
        """Whether a rule with exactly these arguments is in the chain."""
        result = self._run("-t", table, "-C", chain, *args, allowed=(0, 1))
        return result.returncode == 0

    def insert(self, table: str, chain: str, position: int, *args: str) -> None:
        """Insert a rule at a 1-based position in the chain."""
        self._run("-t", table, "-I", chain, str(position), *args)

    def append_unique(self, table: str, chain: str, *args: str) -> None:
        """Append a rule unless an identical one is already present."""
        if not self.exists(table, chain, *args):
            self._run("-t", table, "-A", chain, *args)

    def delete(self, table: str, chain: str, *args: str) -> None:
        """Delete a rule given by its arguments or by its rule number."""
        self._run("-t", table, "-D", chain, *args)

    def new_chain(self, table: str, chain: str) -> None:
        """Create a user chain; fails if it already exists."""
        self._run("-t", table, "-N", chain)

    def clear_chain(self, table: str, chain: str) -> None:
        """Flush a chain, creating it first if it does not exist."""
        if self.chain_exists(table, chain):
            self._run("-t", table, "-F", chain)
        else:
            self.new_chain(table, chain)

    def delete_chain(self, table: str, chain: str) -> None:
        """Delete an empty user chain."""
        self._run("-t", table, "-X", chain)

    def chain_exists(self, table: str, chain: str) -> bool:
        """Whether the table has a chain of this name."""
        return chain in self.list_chains(table)

    def list_chains(self, table: str) -> List[str]:
        """Names of all chains in the table, built-in ones first."""
        output = self._run("-t", table, "-S").stdout or ""
        chains = []
        for line in output.splitlines():
            fields = line.split()
            if len(fields) > 1 and fields[0] in ("-P", "-N"):
                chains.append(fields[1])
        return chains

    def list(self, table: str, chain: str) -> List[str]:
        """Rules of a chain in iptables-save form, the chain header first."""
        output = self._run("-t", table, "-S", chain).stdout or ""
        return [line.strip() for line in output.splitlines() if line.strip()]

    def has_random_fully(self) -> bool:
        """Whether this iptables supports --random-fully (1.6.2 and newer)."""
        if self._random_fully is None:
            output = self._run("--version").stdout or ""
            match = _VERSION_RE.search(output)
            if match is None:
                self._random_fully = False
            else:
                version = tuple(int(part) for part in match.groups())
                self._random_fully = version >= _RANDOM_FULLY_MIN_VERSION
        return self._random_fully