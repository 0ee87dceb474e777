import pytest
from drillbot.choices import resolve_choice, resolve_spoken_choice
from drillbot.grader import coerce_answer, grade
from drillbot.normalize import norm_answer_text, norm_text
from drillbot.problems import Problem


def _numeric(answer=12):
    return Problem(prompt="7 + 5 = ?", narration="What is 7 plus 5?", answer_kind="numeric", canonical_answer=answer)


def _choice():
    return Problem(
        prompt='What does "brave" mean?',
        narration="",
        answer_kind="choice",
        canonical_answer="Not afraid",
        options=("Very sleepy", "Not afraid", "Quite hungry"),
    )


def _text(word="Rhythm"):
    return Problem(prompt="Spell it", narration="Spell rhythm", answer_kind="text", canonical_answer=word)


@pytest.mark.parametrize("problem", [_numeric(), _numeric(-4), _choice(), _text()])
def test_canonical_answer_grades_correct_against_itself(problem):
    assert grade(problem, str(problem.canonical_answer)).correct


def test_numeric_accepts_words_and_spacing():
    problem = _numeric()
    assert grade(problem, "twelve").correct
    assert grade(problem, " 12 ").correct
    assert grade(problem, "12.").correct
    assert not grade(problem, "13").correct


def test_numeric_wrong_reports_normalized_answer():
    result = grade(_numeric(), "fifty six")
    assert result.verdict == "wrong"
    assert result.user_answer_norm == "56"
    assert result.canonical == "12"


def test_choice_letter_and_index_mapping():
    problem = _choice()
    assert grade(problem, "B").correct
    assert grade(problem, "b)").correct
    assert grade(problem, "2").correct
    assert grade(problem, "not AFRAID").correct
    assert not grade(problem, "A").correct
    assert not grade(problem, "4").correct


def test_text_is_case_insensitive_exact():
    problem = _text()
    assert grade(problem, "rhythm").correct
    assert grade(problem, "RHYTHM!").correct
    assert not grade(problem, "rythm").correct


def test_coerce_answer_rejects_non_answers():
    assert coerce_answer(_numeric(), "") is None
    assert coerce_answer(_numeric(), "banana") is None
    assert coerce_answer(_numeric(), "twelve") == "12"
    assert coerce_answer(_text(), "   ") is None
    assert coerce_answer(_choice(), "c") == "Quite hungry"


def test_spoken_choice_forms():
    options = ["cat", "dog", "bird"]
    assert resolve_spoken_choice("Dog", options) == "dog"
    assert resolve_spoken_choice("option c", options) == "bird"
    assert resolve_spoken_choice("number two", options) == "dog"
    assert resolve_spoken_choice("number nine", options) is None
    assert resolve_spoken_choice("horse", options) is None


def test_resolve_choice_without_labels():
    assert resolve_choice("A", ["cat", "dog"], allow_labels=False) is None
    assert resolve_choice("cat", ["cat", "dog"], allow_labels=False) == "cat"


def test_quote_normalization():
    assert norm_text("I'm") == norm_text("I’m")


def test_norm_answer_text_trailing_punct():
    assert norm_answer_text("here .") == "here"
    assert norm_answer_text("here,  ") == "here"
