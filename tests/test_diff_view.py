from diff_view import Span, is_bullet_block, render, render_bullets


def test_inserted_words_are_added():
    spans = render("Managed projects", "Managed 5 cross-functional projects")
    assert spans == [
        Span("unchanged", "Managed"),
        Span("added", "5"),
        Span("added", "cross-functional"),
        Span("unchanged", "projects"),
    ]


def test_identical_text_is_all_unchanged():
    spans = render("Led a team", "Led  a\tteam")
    assert [s.kind for s in spans] == ["unchanged", "unchanged", "unchanged"]


def test_removed_words_come_after_improved_side_runs_out():
    spans = render("Wrote code daily", "Wrote")
    assert spans == [
        Span("unchanged", "Wrote"),
        Span("removed", "code"),
        Span("removed", "daily"),
    ]


def test_greedy_walk_does_not_backtrack():
    # "Built" differs first, so the improved side is consumed as added
    # and the original is reported as removed afterwards.
    spans = render("Built apps", "Designed and built apps")
    assert [s.kind for s in spans] == ["added", "added", "added", "added", "removed", "removed"]


def test_empty_inputs():
    assert render("", "") == []
    assert render("", "new text") == [Span("added", "new"), Span("added", "text")]


def test_bullet_block_detection():
    assert is_bullet_block("- one\n- two")
    assert is_bullet_block("1. one\n2. two")
    assert not is_bullet_block("- only one")
    assert not is_bullet_block("- one\nplain line")


def test_render_bullets_classifies_lines():
    original = "- Python\n- Django\n- SQL"
    improved = "- Python\n- FastAPI\n- SQL"
    spans = render_bullets(original, improved)
    assert spans == [
        Span("unchanged", "- Python"),
        Span("added", "- FastAPI"),
        Span("unchanged", "- SQL"),
        Span("removed", "- Django"),
    ]


def test_render_bullets_falls_back_to_word_diff():
    assert render_bullets("Managed projects", "Managed 5 projects") == render(
        "Managed projects", "Managed 5 projects"
    )


def test_span_to_dict():
    assert Span("added", "x").to_dict() == {"kind": "added", "text": "x"}
