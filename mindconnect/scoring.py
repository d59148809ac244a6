from __future__ import annotations
from typing import Dict, Any, Iterable, List, Mapping, Union
import math
import numpy as np

Number = Union[int, float]


class AnswerValidationError(ValueError):
    """Submitted answers don't fit the test they were submitted to."""

    def __init__(self, message: str, errors: List[dict]):
        super().__init__(message)
        self.message = message
        self.errors = errors


def check_answer_keys(answers: Mapping[int, Number], question_ids: Iterable[int]) -> None:
    known = set(int(q) for q in question_ids)
    unknown = sorted(int(k) for k in answers if int(k) not in known)
    if unknown:
        raise AnswerValidationError(
            "Answers reference questions outside this test",
            [{"field": f"answers.{qid}", "message": "unknown question id"} for qid in unknown],
        )


def compute_score(answers: Mapping[int, Number]) -> Dict[str, Number]:
    """Aggregate score of a submission.

    Plain arithmetic sum of the submitted values in submission order: no
    per-question weighting and no normalization against option scores.
    Stays an int when every value is one. A float total that overflows to
    infinity is rejected so it never reaches storage.
    """
    values = list(answers.values())
    try:
        total = sum(values)
    except OverflowError:
        total = math.inf
    if isinstance(total, float) and not math.isfinite(total):
        raise AnswerValidationError(
            "Answers add up to a non-finite total",
            [{"field": "answers", "message": "sum out of range"}],
        )
    return {"total": total, "answered": len(values)}


def summarize_totals(totals: List[float]) -> Dict[str, Any]:
    if not totals:
        return {"mean": None, "std": None, "min": None, "median": None, "max": None}
    arr = np.asarray(totals, dtype=float)
    return {
        "mean": round(float(np.mean(arr)), 6),
        "std": round(float(np.std(arr)), 6),
        "min": float(np.min(arr)),
        "median": float(np.median(arr)),
        "max": float(np.max(arr)),
    }


def per_test_statistics(results, k_min: int = 5) -> List[dict]:
    """Per-test score aggregates over stored results.

    Groups with fewer than ``k_min`` results are dropped so small cohorts
    can't be singled out.
    """
    k_min = max(1, int(k_min))
    agg: Dict[int, dict] = {}
    for r in results:
        bucket = agg.setdefault(r.test_id, {"title": r.test.title if r.test else None, "totals": [], "count": 0})
        bucket["count"] += 1
        total = (r.score or {}).get("total")
        if isinstance(total, (int, float)) and not isinstance(total, bool):
            bucket["totals"].append(float(total))

    out = []
    for test_id, b in agg.items():
        if b["count"] < k_min:
            continue
        rec = {"testId": test_id, "title": b["title"], "count": b["count"]}
        rec.update(summarize_totals(b["totals"]))
        out.append(rec)

    out.sort(key=lambda x: x["count"], reverse=True)
    return out
