import json

import pytest

from errors import ResponseParseFailure
from response_normalizer import (
    ANALYSIS,
    OPTIMIZATION,
    coerce_keywords,
    coerce_score,
    edit_rejection_reason,
    extract_object,
    iter_json_objects,
    normalize,
    normalize_analysis,
    parse_job_posting,
    parse_optimization,
    strip_code_fence,
)


def test_fenced_json_is_returned_unmodified():
    raw = '```json\n{"matchScore": 72, "suggestedEdits": []}\n```'

    result = normalize(raw)

    assert result.match_score == 72
    assert result.suggested_edits == []
    assert result.is_fallback is False
    assert result.model == "UNKNOWN"
    assert result.prompt_source == "template"


def test_full_object_fields_survive():
    payload = {
        "model": "gemini-1.5-flash",
        "matchScore": 64,
        "keywords": ["Python", "FastAPI"],
        "suggestedEdits": [
            {
                "section": "Experience",
                "originalBullet": "Built web apps.",
                "improvedBullet": "Built 3 production web apps using React and Node.",
                "reason": "Quantified and keyword-rich",
            }
        ],
        "overallRecommendations": ["Mention FastAPI explicitly"],
        "predictedMatchScoreIfKeywordsAdded": 80,
        "jobDetails": {"company": "Acme"},
        "analysis": {"overallMatch": 64},
    }
    raw = "```json\n" + json.dumps(payload) + "\n```"

    result = normalize(raw, "fallback")

    assert result.model == "gemini-1.5-flash"
    assert result.keywords == ["Python", "FastAPI"]
    assert result.overall_recommendations == ["Mention FastAPI explicitly"]
    assert result.predicted_match_score_if_keywords_added == 80
    assert result.job_details == {"company": "Acme"}
    assert result.prompt_source == "fallback"
    edit = result.suggested_edits[0]
    assert edit.section == "Experience"
    assert edit.original_text == "Built web apps."
    assert edit.improved_text == "Built 3 production web apps using React and Node."
    response = result.to_response()
    assert response["analysis"] == {"overallMatch": 64}
    assert response["matchScore"] == 64
    assert response["isFallback"] is False


def test_no_json_gives_labeled_fallback():
    result = normalize("Sorry, I cannot help with that.")

    assert result.is_fallback is True
    assert result.keywords
    assert result.suggested_edits


def test_empty_reply_gives_fallback_with_prompt_source():
    result = normalize("", "manual")
    assert result.is_fallback is True
    assert result.prompt_source == "manual"


def test_object_without_expected_keys_falls_back():
    result = normalize('{"foo": 1}')
    assert result.is_fallback is True


def test_prose_around_json_is_ignored():
    raw = 'Here is my answer:\n{"matchScore": 55, "suggestedEdits": []}\nHope this helps {really}.'
    result = normalize(raw)
    assert result.is_fallback is False
    assert result.match_score == 55


def test_prefers_object_with_expected_keys():
    raw = (
        'Example of a job: {"title": "Echoed example"}\n'
        'Answer: {"keywords": ["Go"], "skills": ["Kubernetes"]}'
    )
    found = extract_object(raw, ANALYSIS)
    assert found == {"keywords": ["Go"], "skills": ["Kubernetes"]}


def test_nested_objects_are_not_separate_candidates():
    text = '{"outer": {"suggestedEdits": []}} {"matchScore": 10}'
    assert list(iter_json_objects(text)) == [{"outer": {"suggestedEdits": []}}, {"matchScore": 10}]
    assert extract_object(text, OPTIMIZATION) == {"matchScore": 10}


def test_malformed_braces_do_not_stop_the_scan():
    text = '{{{ not json {"suggestedEdits": [], "matchScore": 40'
    assert list(iter_json_objects(text)) == []
    text += "}"
    assert list(iter_json_objects(text)) == [{"suggestedEdits": [], "matchScore": 40}]


def test_parse_optimization_raises_on_garbage():
    with pytest.raises(ResponseParseFailure):
        parse_optimization("no json at all")


def test_strip_code_fence_variants():
    assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('{"a": 1}') == '{"a": 1}'


# ===================== edit filtering =====================

def _edits_payload(*edits):
    return json.dumps({"matchScore": 50, "suggestedEdits": list(edits)})


def test_identical_edit_is_dropped():
    raw = _edits_payload({"originalBullet": "Led a team of 5.", "improvedBullet": "Led a team of 5."})
    assert normalize(raw).suggested_edits == []


def test_identical_after_trim_and_case_is_dropped():
    raw = _edits_payload({"originalBullet": "Led a team of 5.", "improvedBullet": "  led a team of 5. "})
    assert normalize(raw).suggested_edits == []


def test_weak_edits_are_dropped_and_good_ones_kept():
    raw = _edits_payload(
        {"originalBullet": "Python", "improvedBullet": "Go"},
        {"originalBullet": "Skills", "improvedBullet": "Add specific technologies you used"},
        {"originalBullet": "Tools", "improvedBullet": "Docker, Kubernetes, etc."},
        {"originalBullet": "Worked at company", "improvedBullet": "Worked at [Company] as engineer"},
        {"originalBullet": "", "improvedBullet": "Something long enough here"},
        {"original": "Built web apps.", "suggested": "Built 3 production web apps using React and Node."},
    )
    edits = normalize(raw).suggested_edits
    assert [e.original_text for e in edits] == ["Built web apps."]


def test_list_as_a_verb_is_not_a_placeholder():
    assert edit_rejection_reason("Skills: Python", "Python, FastAPI, PostgreSQL (listed in order of depth)") is None
    assert edit_rejection_reason("Skills", "List your strongest tools here") == "generic_placeholder"


def test_current_text_key_variant_is_accepted():
    raw = _edits_payload(
        {"currentText": "Managed projects", "suggestedText": "Managed 5 cross-functional projects"}
    )
    edits = normalize(raw).suggested_edits
    assert edits[0].improved_text == "Managed 5 cross-functional projects"


def test_edit_rejection_reasons():
    assert edit_rejection_reason("a", "a") == "identical"
    assert edit_rejection_reason("abc", "short") == "too_short"
    assert edit_rejection_reason("", "long enough text") == "missing_text"
    assert edit_rejection_reason("old line", "generic improvement statement") == "generic_placeholder"


# ===================== coercion =====================

def test_score_coercion():
    assert coerce_score(72) == 72
    assert coerce_score("75%") == 75
    assert coerce_score(140) == 100
    assert coerce_score(-3) == 0
    assert coerce_score(True) is None
    assert coerce_score("n/a") is None


def test_whole_scores_stay_integers_on_the_wire():
    assert type(coerce_score(72)) is int
    assert type(coerce_score("75%")) is int
    assert coerce_score(72.5) == 72.5

    result = normalize('{"matchScore": 72, "suggestedEdits": []}')
    assert type(result.match_score) is int
    assert '"matchScore": 72,' in json.dumps(result.to_response())


def test_match_score_falls_back_to_analysis_overall_match():
    result = normalize('{"analysis": {"overallMatch": "68%"}, "suggestedEdits": []}')
    assert result.match_score == 68


def test_missing_match_score_stays_none():
    result = normalize('{"suggestedEdits": []}')
    assert result.match_score is None
    assert result.is_fallback is False


def test_keyword_object_is_flattened():
    value = {"jobKeywords": ["Python", "AWS"], "missingKeywords": ["AWS", "Terraform"]}
    assert coerce_keywords(value) == ["Python", "AWS", "Terraform"]


# ===================== analysis / job =====================

def test_analysis_picks_expected_object():
    raw = 'Sure!\n```json\n{"keywords": ["SQL"], "skills": ["Excel"], "requirements": ["BSc"], "level": "mid"}\n```'
    analysis = normalize_analysis(raw)
    assert analysis.is_fallback is False
    assert analysis.keywords == ["SQL"]
    assert analysis.level == "mid"


def test_analysis_fallback():
    analysis = normalize_analysis("nothing useful")
    assert analysis.is_fallback is True
    assert analysis.keywords == ["technology", "development", "experience"]
    assert analysis.industry == "Technology"


def test_job_posting_parse():
    raw = json.dumps(
        {
            "title": "Data Engineer",
            "company": "Acme",
            "requirements": ["Spark"],
            "sponsorship": "yes",
            "postedDate": "2024-05-01",
        }
    )
    posting = parse_job_posting(raw, "https://jobs.example.com/1")
    assert posting.title == "Data Engineer"
    assert posting.sponsorship is True
    assert posting.job_url == "https://jobs.example.com/1"
    assert posting.to_response()["postedDate"] == "2024-05-01"


def test_job_posting_without_json_raises():
    with pytest.raises(ResponseParseFailure) as info:
        parse_job_posting("I cannot browse the web.", "https://x")
    assert info.value.status_code == 502


# ===================== pathological nesting =====================

def test_deeply_nested_array_falls_back():
    raw = '{"matchScore": 50, "x": ' + "[" * 50000 + "]" * 50000 + "}"
    result = normalize(raw)
    assert result.is_fallback is True


def test_unterminated_object_chain_falls_back():
    raw = "Here you go: " + '{"a":' * 3000
    assert normalize(raw).is_fallback is True
    assert normalize_analysis(raw).is_fallback is True


def test_object_after_deep_junk_is_still_found():
    raw = '{"x": ' + "[" * 50000 + ' oops\n{"matchScore": 44, "suggestedEdits": []}'
    result = normalize(raw)
    assert result.is_fallback is False
    assert result.match_score == 44
