# secrets.py
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Set, Tuple

MASK = "***"

# ${{ secrets.NAME }} / ${{ env.NAME }}
_EXPR = re.compile(r"\$\{\{\s*(secrets|env)\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


class Secret:
    """Opaque credential. Its value only leaves through `reveal()`."""

    __slots__ = ("name", "_value")

    def __init__(self, name: str, value: str):
        self.name = name
        self._value = value

    def reveal(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"Secret({self.name!r}, {MASK!r})"

    __str__ = __repr__

    def __eq__(self, other) -> bool:
        return isinstance(other, Secret) and other.name == self.name and other._value == self._value

    def __hash__(self) -> int:
        return hash(self.name)


class SecretStore:
    """Named secrets available to a run. Values are never written to run state."""

    def __init__(self, values: Mapping[str, str] | None = None):
        self._secrets: Dict[str, Secret] = {}
        for k, v in (values or {}).items():
            self.set(k, v)

    def set(self, name: str, value: str) -> None:
        self._secrets[name] = Secret(name, value)

    def get(self, name: str) -> Optional[Secret]:
        return self._secrets.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._secrets

    def names(self) -> list[str]:
        return sorted(self._secrets)

    def values(self) -> list[str]:
        return [s.reveal() for s in self._secrets.values() if s.reveal()]

    # --- constructors -------------------------------------------------

    @classmethod
    def from_environ(cls, names: Iterable[str], environ: Mapping[str, str] | None = None) -> SecretStore:
        env = os.environ if environ is None else environ
        return cls({n: env[n] for n in names if env.get(n)})

    def load_pairs(self, pairs: Iterable[str]) -> None:
        """Load NAME=VALUE pairs (from --secret)."""
        for pair in pairs:
            name, sep, value = pair.partition("=")
            if not sep or not name.strip():
                raise ValueError(f"Secret must be NAME=VALUE, got: {name.strip() or '<empty>'}")
            self.set(name.strip(), value)

    def load_file(self, path: str | Path) -> None:
        """Load a dotenv-style file: NAME=VALUE per line, '#' comments."""
        for raw in Path(path).read_text(encoding="utf-8").splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[len("export "):]
            name, sep, value = line.partition("=")
            if not sep:
                continue
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
                value = value[1:-1]
            self.set(name.strip(), value)

    def masker(self) -> SecretMasker:
        return SecretMasker(self.values())


class SecretMasker:
    """Replaces any known secret value in text with ***."""

    def __init__(self, values: Iterable[str] = ()):
        # longest first so overlapping secrets mask fully
        self._values = sorted({v for v in values if v}, key=len, reverse=True)

    def add(self, value: str) -> None:
        if value and value not in self._values:
            self._values.append(value)
            self._values.sort(key=len, reverse=True)

    def extended(self, values: Iterable[str]) -> SecretMasker:
        """A new masker with these values plus `values`; this one is unchanged."""
        return SecretMasker([*self._values, *values])

    def mask(self, text: str) -> str:
        if not text:
            return text
        for v in self._values:
            text = text.replace(v, MASK)
        return text


def resolve_expressions(
    text: str,
    secrets: SecretStore,
    env: Mapping[str, str],
) -> Tuple[str, Set[str], Set[str]]:
    """
    Substitute ${{ secrets.X }} and ${{ env.X }} in `text`.

    Returns (resolved_text, secrets_used, missing_secrets). Missing secrets
    resolve to the empty string.
    """
    used: Set[str] = set()
    missing: Set[str] = set()

    def _sub(m: re.Match) -> str:
        scope, name = m.group(1), m.group(2)
        if scope == "env":
            return env.get(name, "")
        secret = secrets.get(name)
        if secret is None:
            missing.add(name)
            return ""
        used.add(name)
        return secret.reveal()

    return _EXPR.sub(_sub, text), used, missing

