import pytest

from mindconnect.scoring import AnswerValidationError, check_answer_keys, compute_score, per_test_statistics, summarize_totals


def test_score_is_plain_sum_of_answers():
    assert compute_score({10: 5, 11: 3, 12: 1}) == {"total": 9, "answered": 3}


def test_score_keeps_ints_and_sums_floats_in_order():
    score = compute_score({1: 1, 2: 2})
    assert score["total"] == 3 and isinstance(score["total"], int)

    answers = {1: 0.1, 2: 0.2, 3: 4}
    assert compute_score(answers)["total"] == sum(answers.values())


def test_score_ignores_option_scores_and_allows_out_of_range_values():
    # No normalization against the question's declared options.
    assert compute_score({1: 100, 2: -3})["total"] == 97


def test_unknown_question_ids_are_listed():
    with pytest.raises(AnswerValidationError) as info:
        check_answer_keys({1: 2, 99: 3, 7: 1}, [1, 2, 3])
    fields = [e["field"] for e in info.value.errors]
    assert fields == ["answers.7", "answers.99"]


def test_known_question_ids_pass():
    check_answer_keys({1: 2, 3: 4}, [1, 2, 3])


def test_summarize_totals():
    stats = summarize_totals([3, 5, 7])
    assert stats["mean"] == 5.0
    assert stats["median"] == 5.0
    assert stats["min"] == 3.0 and stats["max"] == 7.0
    assert summarize_totals([])["mean"] is None


class _Row:
    def __init__(self, test_id, total, title="T"):
        self.test_id = test_id
        self.score = {"total": total}
        self.test = type("T", (), {"title": title})()


def test_per_test_statistics_drops_small_groups():
    rows = [_Row(1, 10), _Row(1, 20), _Row(1, 30), _Row(2, 5)]
    out = per_test_statistics(rows, k_min=2)
    assert [r["testId"] for r in out] == [1]
    assert out[0]["count"] == 3
    assert out[0]["mean"] == 20.0


def test_compute_score_rejects_overflowing_total():
    with pytest.raises(AnswerValidationError) as info:
        compute_score({1: 1e308, 2: 1e308})
    assert info.value.errors == [{"field": "answers", "message": "sum out of range"}]


def test_compute_score_keeps_large_int_totals():
    assert compute_score({1: 10 ** 30, 2: 1})["total"] == 10 ** 30 + 1
