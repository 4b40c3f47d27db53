"""Brand matching of search candidates against a target brand."""

from typing import List, Optional, Sequence, Tuple

from loguru import logger

from asin_mapper.models import MatchResult, RawCandidate


NO_MATCH_RESULT = MatchResult(matched=False)


def score_one(target_brand: Optional[str], brand_text: Optional[str]) -> MatchResult:
    """Score one candidate's displayed brand text against the target brand.

    Full case-insensitive equality is an exact match (rank 0). Otherwise the
    target's whitespace tokens are scanned in order and the first one found
    as a substring of the brand text wins, ranked by its 1-based position.
    """
    target = (target_brand or "").strip()
    brand = (brand_text or "").strip()
    if not target or not brand:
        return NO_MATCH_RESULT

    brand_folded = brand.casefold()
    if brand_folded == target.casefold():
        return MatchResult(matched=True, matched_word=target, rank=0, exact=True)

    for index, token in enumerate(target.split()):
        if token.casefold() in brand_folded:
            return MatchResult(matched=True, matched_word=token, rank=index + 1, exact=False)

    return NO_MATCH_RESULT


def match_candidates(
    target_brand: str,
    candidates: Sequence[RawCandidate],
    max_cards: Optional[int] = None,
) -> List[Tuple[RawCandidate, MatchResult]]:
    """Keep the candidates whose brand matches the target.

    Exact matches replace partial ones entirely when at least one exists.
    Candidate order from the results page is preserved and ``max_cards``
    truncates the final list.
    """
    exact_matches: List[Tuple[RawCandidate, MatchResult]] = []
    partial_matches: List[Tuple[RawCandidate, MatchResult]] = []

    for candidate in candidates:
        result = score_one(target_brand, candidate.brand_text)
        if not result.matched:
            continue
        if result.exact:
            exact_matches.append((candidate, result))
        else:
            partial_matches.append((candidate, result))

    final_matches = exact_matches if exact_matches else partial_matches

    logger.info(
        f"[{target_brand}] Found {len(final_matches)} matching product(s) "
        f"(Exact: {len(exact_matches)}, Partial: {len(partial_matches)})"
    )

    if max_cards is not None:
        final_matches = final_matches[:max_cards]
    return final_matches
