from typing import Dict, List, Optional

from poker.models import SIZES, Participant, TShirtSize


NOT_AVAILABLE = 'N/A'


def aggregate_votes(votes: Dict[str, TShirtSize]) -> Optional[TShirtSize]:
    """Nearest size to the mean weight of cast votes.

    Returns None when nobody voted. Equal distances resolve to the size
    that comes first in scale order (XS -> XL).
    """
    weights = [TShirtSize(size).weight for size in votes.values()]
    if not weights:
        return None
    mean = sum(weights) / len(weights)
    closest = SIZES[0]
    for size in SIZES[1:]:
        if abs(size.weight - mean) < abs(closest.weight - mean):
            closest = size
    return closest


def summarize_votes(participants: List[Participant], votes: Dict[str, TShirtSize]) -> dict:
    """Results table: one row per participant plus the group estimate."""
    estimate = aggregate_votes(votes)
    rows = []
    for p in participants:
        size = votes.get(p.id)
        rows.append({'id': p.id, 'name': p.name, 'vote': TShirtSize(size).value if size else None})
    return {
        'estimate': estimate.value if estimate else NOT_AVAILABLE,
        'rows': rows,
    }
