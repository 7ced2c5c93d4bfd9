from __future__ import annotations

from dataclasses import dataclass, field
from itertools import combinations

from .scoring import Pair, cross_pairs, group_score, normalize_edge, violates_history

GENDERS = ("female", "male")


@dataclass(frozen=True)
class SlotEntry:
    user_id: int
    gender: str
    age: int
    activity_type: str
    location: str


@dataclass
class MatchCandidate:
    female_pair: Pair
    male_pair: Pair
    score: float
    tie_break: int

    @property
    def user_ids(self) -> tuple[int, int, int, int]:
        return (*self.female_pair, *self.male_pair)

    def history_edges(self) -> list[Pair]:
        return [normalize_edge(f, m) for f, m in cross_pairs(self.female_pair, self.male_pair)]


@dataclass
class SelectionResult:
    matched: list[MatchCandidate] = field(default_factory=list)
    unmatched: list[int] = field(default_factory=list)
    candidate_count: int = 0


def build_candidates(
    entries: list[SlotEntry],
    history: set[Pair] | frozenset[Pair],
    threshold: float,
) -> list[MatchCandidate]:
    females = [e.user_id for e in entries if e.gender == "female"]
    males = [e.user_id for e in entries if e.gender == "male"]
    ages = {e.user_id: e.age for e in entries}

    candidates: list[MatchCandidate] = []
    for fp in combinations(females, 2):
        for mp in combinations(males, 2):
            if violates_history(fp, mp, history):
                continue
            score = group_score(fp, mp, ages)
            if score < threshold:
                continue
            # Lower "older woman" age wins ties.
            tie = max(ages[fp[0]], ages[fp[1]])
            candidates.append(MatchCandidate(female_pair=fp, male_pair=mp, score=score, tie_break=tie))
    return candidates


def greedy_select(candidates: list[MatchCandidate]) -> list[MatchCandidate]:
    used: set[int] = set()
    chosen: list[MatchCandidate] = []
    for candidate in sorted(candidates, key=lambda c: (-c.score, c.tie_break)):
        ids = candidate.user_ids
        if any(uid in used for uid in ids):
            continue
        chosen.append(candidate)
        used.update(ids)
    return chosen


def select_groups(
    entries: list[SlotEntry],
    history: set[Pair] | frozenset[Pair],
    threshold: float = 0.75,
) -> SelectionResult:
    """Pick conflict-free 2+2 groups for one slot.

    Greedy over candidates sorted by score (desc) then tie-break (asc). Not
    globally optimal, but deterministic for identical inputs.
    """
    females = [e.user_id for e in entries if e.gender == "female"]
    males = [e.user_id for e in entries if e.gender == "male"]
    if len(females) < 2 or len(males) < 2:
        return SelectionResult(matched=[], unmatched=females + males, candidate_count=0)

    candidates = build_candidates(entries, history, threshold)
    chosen = greedy_select(candidates)

    used = {uid for c in chosen for uid in c.user_ids}
    unmatched = [uid for uid in females + males if uid not in used]
    return SelectionResult(matched=chosen, unmatched=unmatched, candidate_count=len(candidates))
