from __future__ import annotations

import itertools
from collections import Counter
from dataclasses import dataclass, field
from statistics import mean
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import numpy as np

from kep_settings import get_settings

KIDNEY_TYPES: Tuple[str, ...] = ("O", "A", "B", "AB")

# recipient type -> donor types it can accept
_ACCEPTS: Dict[str, frozenset] = {
    "O": frozenset({"O"}),
    "A": frozenset({"O", "A"}),
    "B": frozenset({"O", "B"}),
    "AB": frozenset(KIDNEY_TYPES),
}


def abo_compatible(donor_type: str, recipient_type: str) -> bool:
    """True when a `donor_type` kidney can go to a `recipient_type` patient."""
    return donor_type in _ACCEPTS.get(recipient_type, frozenset())


@dataclass(frozen=True)
class ExchangePair:
    """A patient together with a willing but incompatible donor."""

    donor_type: str
    receiver_type: str
    pair_id: int

    def can_receive(self, other: "ExchangePair") -> bool:
        """True when this pair's patient accepts the donor kidney of `other`."""
        return abo_compatible(other.donor_type, self.receiver_type)

    @property
    def is_self_compatible(self) -> bool:
        return self.can_receive(self)

    def __str__(self) -> str:
        return f"#{self.pair_id} ({self.donor_type}->{self.receiver_type})"


class IdSequence:
    """Monotonic id source owned by whoever builds hospitals."""

    def __init__(self, start: int = 1) -> None:
        self._counter: Iterator[int] = itertools.count(start)

    def next(self) -> int:
        return next(self._counter)


@dataclass
class Hospital:
    hospital_id: int
    max_surgeries: int
    pairs: List[ExchangePair] = field(default_factory=list)

    def add_pair(self, pair: ExchangePair) -> None:
        self.pairs.append(pair)

    def get_pairs(self) -> List[ExchangePair]:
        return list(self.pairs)

    def get_size(self) -> int:
        return len(self.pairs)

    def get_max_surgeries(self) -> int:
        return self.max_surgeries


def create_hospital(
    num_pairs: Optional[int] = None,
    max_surgeries: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
    hospital_ids: Optional[IdSequence] = None,
    pair_ids: Optional[IdSequence] = None,
) -> Hospital:
    """
    Generate a hospital with randomly typed exchange pairs.

    Parameters
    ----------
    num_pairs : int, optional
        Number of pairs to create. Defaults to `KEPSettings.num_pairs`.
    max_surgeries : int, optional
        Surgery slots of the hospital. Defaults to `KEPSettings.max_surgeries`.
    rng : numpy.random.Generator, optional
        Controls deterministic generation. Seeded from `KEPSettings.seed` if omitted.
    hospital_ids, pair_ids : IdSequence, optional
        Id sources shared across hospitals so ids stay unique. Fresh sequences
        starting at 1 are used if omitted.

    Notes
    -----
    Donor and receiver of a pair never share a blood type.
    """
    settings = get_settings()
    num_pairs = settings.num_pairs if num_pairs is None else num_pairs
    max_surgeries = settings.max_surgeries if max_surgeries is None else max_surgeries
    if num_pairs < 0:
        raise ValueError("num_pairs must be non-negative")
    if max_surgeries < 0:
        raise ValueError("max_surgeries must be non-negative")

    rng = rng or np.random.default_rng(settings.seed)
    hospital_ids = hospital_ids or IdSequence()
    pair_ids = pair_ids or IdSequence()

    hospital = Hospital(hospital_id=hospital_ids.next(), max_surgeries=max_surgeries)
    n_types = len(KIDNEY_TYPES)
    for _ in range(num_pairs):
        donor_type = KIDNEY_TYPES[int(rng.integers(n_types))]
        receiver_type = KIDNEY_TYPES[int(rng.integers(n_types))]
        while receiver_type == donor_type:
            receiver_type = KIDNEY_TYPES[int(rng.integers(n_types))]
        hospital.add_pair(ExchangePair(donor_type, receiver_type, pair_ids.next()))
    return hospital


def extract_cycles(matches: Mapping[Any, Any]) -> List[Tuple[Any, ...]]:
    """Split a match mapping back into its closed exchange rings."""
    cycles: List[Tuple[Any, ...]] = []
    seen = set()
    for start in matches:
        if start in seen:
            continue
        ring = [start]
        seen.add(start)
        current = matches[start]
        while current != start and current in matches and current not in seen:
            ring.append(current)
            seen.add(current)
            current = matches[current]
        cycles.append(tuple(ring))
    return cycles


def summarize_hospital(hospital: Hospital) -> Dict[str, Any]:
    """
    Produce high-level statistics for a generated hospital.
    """
    pairs = hospital.pairs
    return {
        "hospital": hospital.hospital_id,
        "pairs_total": len(pairs),
        "max_surgeries": hospital.max_surgeries,
        "self_compatible_pairs": sum(1 for pair in pairs if pair.is_self_compatible),
        "donor_type_counts": dict(Counter(pair.donor_type for pair in pairs)),
        "receiver_type_counts": dict(Counter(pair.receiver_type for pair in pairs)),
    }


def summarize_matches(
    hospital: Hospital,
    matches: Optional[Mapping[ExchangePair, ExchangePair]],
) -> Dict[str, Any]:
    """Report coverage of a matching run against the hospital it was run on."""
    matches = matches or {}
    cycles = extract_cycles(matches)
    lengths = [len(cycle) for cycle in cycles]
    return {
        "hospital": hospital.hospital_id,
        "pairs_total": hospital.get_size(),
        "matched": len(matches),
        "surgeries_left": hospital.max_surgeries - len(matches),
        "cycles": len(cycles),
        "cycle_lengths": sorted(lengths),
        "avg_cycle_length": mean(lengths) if lengths else None,
        "unmatched_pair_ids": [pair.pair_id for pair in hospital.pairs if pair not in matches],
    }
