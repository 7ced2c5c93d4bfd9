from __future__ import annotations

from typing import Iterable, Mapping

Pair = tuple[int, int]


def normalize_edge(user_a: int, user_b: int) -> Pair:
    return (min(user_a, user_b), max(user_a, user_b))


def cross_pairs(female_pair: Pair, male_pair: Pair) -> list[Pair]:
    return [(f, m) for f in female_pair for m in male_pair]


def pair_score(female_age: int, male_age: int) -> float:
    """Age compatibility of one woman/man pair, in [0, 1.05].

    A man three or more years younger, or within two years either way, is
    neutral. Three to five years older earns a small linear bonus. Beyond
    that the score decays, more gently when both are under 30.
    """
    diff = male_age - female_age
    if diff <= -3:
        return 1.0
    if diff <= 2:
        return 1.0
    if diff <= 5:
        return 1.0 + ((5 - diff) / 4) * 0.05
    if female_age < 30 and male_age < 30:
        return max(0.0, 1.0 - diff / 30.0)
    return max(0.0, 1.0 - diff / 10.0)


def group_score(female_pair: Pair, male_pair: Pair, ages: Mapping[int, int]) -> float:
    scores = [pair_score(ages[f], ages[m]) for f, m in cross_pairs(female_pair, male_pair)]
    return sum(scores) / len(scores)


def violates_history(female_pair: Pair, male_pair: Pair, history_edges: set[Pair] | frozenset[Pair]) -> bool:
    return any(normalize_edge(f, m) in history_edges for f, m in cross_pairs(female_pair, male_pair))


def history_edges_from_rows(rows: Iterable[Mapping[str, object]]) -> set[Pair]:
    edges: set[Pair] = set()
    for row in rows:
        edges.add(normalize_edge(int(row["user_id_female"]), int(row["user_id_male"])))
    return edges
