"""
Administrative area (LGA) names
===============================

Crash rows, casualty reports and the boundary GeoJSON spell council
names differently ("CC MARION." vs "CITY OF MARION"). Before counting
crashes per area, every raw name is resolved to one canonical name.

- The alias table is a packaged JSON asset (`data/lga_aliases.json`,
  canonical -> list of aliases), not code.
- Lookup is exact after upper-casing and trimming.
- Unknown names are their own canonical form (open world: they are
  never merged with anything else).
- Display names (`data/lga_display_names.json`) give the short label
  shown to users ("CC MARION." -> "Marion").
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Mapping, Optional, Sequence
import json

DATA_DIR = Path(__file__).resolve().parent / "data"
ALIASES_FILE = DATA_DIR / "lga_aliases.json"
DISPLAY_NAMES_FILE = DATA_DIR / "lga_display_names.json"

# Area values that mean "not recorded"
PLACEHOLDER_NAMES = frozenset({"", "N/A", "NA", "UNKNOWN"})


def _key(name: str) -> str:
    return str(name).upper().strip()


def is_placeholder(name: Optional[str]) -> bool:
    return name is None or _key(name) in PLACEHOLDER_NAMES


@dataclass
class AdministrativeAreaIndex:
    """canonical -> aliases, with the reverse lookup built once."""
    aliases: Dict[str, FrozenSet[str]]
    display_names: Dict[str, str] = field(default_factory=dict)
    _lookup: Dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _display: Dict[str, str] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        for canonical, names in self.aliases.items():
            ckey = _key(canonical)
            for alias in names:
                akey = _key(alias)
                prev = self._lookup.get(akey)
                if prev is not None and prev != canonical:
                    raise ValueError(f"Alias {alias!r} maps to both {prev!r} and {canonical!r}")
                self._lookup[akey] = canonical
            if ckey in self._lookup and self._lookup[ckey] != canonical:
                raise ValueError(f"Canonical name {canonical!r} is also an alias of {self._lookup[ckey]!r}")
            self._lookup[ckey] = canonical
        self._display = {_key(k): v.strip() for k, v in self.display_names.items()}

    @classmethod
    def from_mapping(cls, aliases: Mapping[str, Sequence[str]],
                     display_names: Optional[Mapping[str, str]] = None) -> "AdministrativeAreaIndex":
        return cls(
            aliases={k: frozenset(v) for k, v in aliases.items()},
            display_names=dict(display_names or {}),
        )

    def canonical(self, name: str) -> str:
        """Canonical form of a raw area name (upper-cased, trimmed)."""
        k = _key(name)
        return self._lookup.get(k, k)

    def display_name(self, name: str) -> str:
        """Human label for a raw or canonical name; falls back to the input."""
        k = _key(name)
        if k in self._display:
            return self._display[k]
        c = self.canonical(name)
        return self._display.get(c, name)

    def sorted_by_display(self, names) -> list:
        """Sort raw names by their display labels (filter option order)."""
        return sorted(names, key=lambda n: self.display_name(n).lower())


def load_area_index(aliases_path: Optional[str] = None,
                    display_path: Optional[str] = None) -> AdministrativeAreaIndex:
    """Load the alias and display-name assets (packaged ones by default)."""
    with open(aliases_path or ALIASES_FILE, "r", encoding="utf-8") as f:
        aliases = json.load(f)
    with open(display_path or DISPLAY_NAMES_FILE, "r", encoding="utf-8") as f:
        display = json.load(f)
    return AdministrativeAreaIndex.from_mapping(aliases, display)
