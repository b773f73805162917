"""Bitcoin destination descriptors embedded in attestation messages.

A message must name exactly one destination. Recognized shapes:

- legacy / P2SH address: base58, starts with 1 or 3, 26-35 chars
- segwit address: bech32, starts with bc1
- extended public key: base58, starts with xpub, ypub or zpub

Candidates are whole tokens, so the digits inside an extended key never
read as a separate address.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

BASE58 = "1-9A-HJ-NP-Za-km-z"
BECH32 = "02-9ac-hj-np-z"


class DescriptorKind(str, Enum):
    ADDRESS = "address"
    EXTENDED_KEY = "extended_key"


class MatchKind(str, Enum):
    NONE = "none"
    ONE = "one"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class Descriptor:
    kind: DescriptorKind
    value: str


@dataclass(frozen=True)
class Extraction:
    kind: MatchKind
    candidates: tuple[Descriptor, ...] = field(default_factory=tuple)

    @property
    def descriptor(self) -> Descriptor:
        if self.kind is not MatchKind.ONE:
            raise ValueError(f"no single destination ({self.kind.value})")
        return self.candidates[0]


DESCRIPTOR_PATTERNS: tuple[tuple[DescriptorKind, re.Pattern[str]], ...] = (
    (DescriptorKind.EXTENDED_KEY, re.compile(rf"(?<![0-9A-Za-z])[xyz]pub[{BASE58}]{{100,112}}(?![0-9A-Za-z])")),
    (DescriptorKind.ADDRESS, re.compile(rf"(?<![0-9A-Za-z])(?:bc1|BC1)[{BECH32}{BECH32.upper()}]{{11,71}}(?![0-9A-Za-z])")),
    (DescriptorKind.ADDRESS, re.compile(rf"(?<![0-9A-Za-z])[13][{BASE58}]{{25,34}}(?![0-9A-Za-z])")),
)


def extract_destinations(message: str) -> Extraction:
    """Find every destination descriptor in `message`, in message order."""
    found: list[tuple[int, Descriptor]] = []
    for kind, pattern in DESCRIPTOR_PATTERNS:
        for match in pattern.finditer(message):
            found.append((match.start(), Descriptor(kind=kind, value=match.group(0))))

    found.sort(key=lambda item: item[0])
    candidates = tuple(descriptor for _, descriptor in found)

    if not candidates:
        return Extraction(kind=MatchKind.NONE)
    if len(candidates) == 1:
        return Extraction(kind=MatchKind.ONE, candidates=candidates)
    return Extraction(kind=MatchKind.AMBIGUOUS, candidates=candidates)
