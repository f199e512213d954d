from grading import grade_answers, normalize, percentage, render_html_report, render_text_report


def test_grading_is_case_and_whitespace_insensitive_and_ignores_unkeyed():
    result = grade_answers({"q1": "B", "q2": "c"}, {"q1": "b", "q2": "C", "q3": "x"})

    assert (result.correct, result.total, result.percentage) == (2, 2, 100)
    assert {q.key for q in result.questions} == {"q1", "q2"}


def test_missing_answer_counts_as_blank():
    result = grade_answers({"q1": "B"}, {})

    assert (result.correct, result.total, result.percentage) == (0, 1, 0)
    assert result.questions[0].submitted is None
    assert result.questions[0].correct is False


def test_blank_expected_matches_missing_answer():
    result = grade_answers({"q1": "  "}, {})

    assert result.correct == 1


def test_empty_answer_key_gives_zero_percent():
    result = grade_answers({}, {"q1": "a"})

    assert (result.correct, result.total, result.percentage) == (0, 0, 0)


def test_malformed_answers_degrade_to_incorrect():
    result = grade_answers({"q1": "a", "q2": "3"}, {"q1": {"nested": True}, "q2": 3.0})

    assert [q.correct for q in result.questions] == [False, True]
    assert grade_answers({"q1": "a"}, None).correct == 0


def test_normalize_renders_scalars_like_form_values():
    assert normalize("  Yes ") == "yes"
    assert normalize(None) == ""
    assert normalize(True) == "true"
    assert normalize(4.0) == "4"
    assert normalize(["A", "b"]) == "a,b"


def test_percentage_rounds_half_up():
    assert percentage(1, 8) == 13
    assert percentage(1, 3) == 33
    assert percentage(2, 3) == 67
    assert percentage(0, 0) == 0


def test_reports_escape_markup():
    result = grade_answers({"q<1>": "a&b"}, {"q<1>": "<script>"})

    html_report = render_html_report(result)
    assert "<script>" not in html_report
    assert "&lt;script&gt;" in html_report
    assert "q&lt;1&gt;" in html_report
    assert "a&amp;b" in html_report
    assert render_text_report(result).startswith("Score: 0/1 (0%)")


def test_matching_lowercases_without_unicode_folding():
    result = grade_answers({"q1": "ß", "q2": "Straße"}, {"q1": "SS", "q2": "STRASSE"})

    assert normalize("ÄRGER") == "ärger"
    assert (result.correct, result.total) == (0, 2)
