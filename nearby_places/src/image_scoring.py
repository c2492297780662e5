"""
Picks the best image for a place among candidates from several sources.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

SOURCE_SCORES = {
    'wikipedia': 80,
    'wikidata': 75,
    'opentripmap': 60,
    'unsplash': 50,
    'user': 90,
    'placeholder': 20,
}
DEFAULT_SOURCE_SCORE = 40


@dataclass
class ImageCandidate:
    url: str
    source: str
    width: Optional[int] = None
    height: Optional[int] = None


def score_image(candidate: ImageCandidate) -> int:
    """Quality score in [0, 100] from source, resolution, aspect ratio and URL hints."""
    if not candidate.url:
        return 0

    score = SOURCE_SCORES.get(candidate.source, DEFAULT_SOURCE_SCORE)

    if candidate.width:
        if candidate.width >= 1200:
            score += 10
        elif candidate.width >= 800:
            score += 5
        elif candidate.width < 400:
            score -= 10

    if candidate.width and candidate.height:
        aspect = candidate.width / candidate.height
        if 1.0 <= aspect <= 2.0:
            score += 5
        elif aspect < 0.5 or aspect > 2.5:
            score -= 15

    url = candidate.url.lower()
    if '1280' in url or '1200' in url or 'large' in url:
        score += 5
    if 'thumb' in url or 'small' in url or '_s.' in url:
        score -= 10
    if url.startswith('https://'):
        score += 2

    return max(0, min(100, score))


def select_best_image(candidates: Iterable[ImageCandidate]) -> Optional[ImageCandidate]:
    """Highest scoring candidate with a URL; the earliest wins a tie."""
    best = None
    best_score = -1
    for candidate in candidates:
        if not candidate or not candidate.url:
            continue
        score = score_image(candidate)
        if score > best_score:
            best, best_score = candidate, score
    return best
