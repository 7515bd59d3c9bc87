import asyncio
import json

import pytest

import pipeline
from errors import FailureCause, ProviderFailure, ResponseParseFailure
from llm_client import ModelGateway, ProviderClient, RequestOptions
from models import OptimizationResult, SuggestedEdit
from review import SessionStore
from settings import PROVIDER_IDS, default_model_settings


LINES = ["Jane Doe", "Built web apps.", "Led a team of 5."]
JD = "Senior engineer with React and Node."


def _reply(score, edits=()):
    return "```json\n" + json.dumps({"model": "fake-1", "matchScore": score, "suggestedEdits": list(edits)}) + "\n```"


FIRST_EDIT = {
    "section": "Experience",
    "originalBullet": "Built web apps.",
    "improvedBullet": "Built 3 production web apps using React and Node.",
    "reason": "keywords",
}


def test_optimize_loads_result_into_session(make_gateway):
    gateway, fake = make_gateway([_reply(61, [FIRST_EDIT])])
    session = SessionStore().create(LINES, JD, {"lines": LINES})

    result = asyncio.run(pipeline.optimize_cv(gateway, session))

    assert result.match_score == 61
    assert session.result is result
    assert session.state.accepted == {0}
    assert "\n".join(LINES) in fake.prompts[0]
    assert fake.options[0].json_mode is True


def test_recalculate_sends_patched_text_without_structured_data(make_gateway):
    gateway, fake = make_gateway([_reply(61, [FIRST_EDIT]), _reply(78)])
    session = SessionStore().create(LINES, JD, {"lines": LINES})
    asyncio.run(pipeline.optimize_cv(gateway, session))

    result = asyncio.run(pipeline.recalculate_session(gateway, session))

    prompt = fake.prompts[1]
    assert "Built 3 production web apps using React and Node." in prompt
    assert "Built web apps.\n" not in prompt
    assert "\nNone\n" in prompt
    assert result.match_score == 78
    assert result.previous_match_score == 61
    assert session.score_history == [61, 78]
    assert session.lines[1] == "Built 3 production web apps using React and Node."


def test_recalculate_function_contract(make_gateway):
    gateway, fake = make_gateway([_reply(70)])
    current = OptimizationResult(match_score=50)
    edits = [SuggestedEdit(original_text="Led a team of 5.", improved_text="Led and mentored 5 engineers")]

    result = asyncio.run(pipeline.recalculate(gateway, current, LINES, edits, set(), JD))

    assert "Led a team of 5." in fake.prompts[0]
    assert result.previous_match_score == 50


def test_unparseable_reply_yields_fallback(make_gateway):
    gateway, _ = make_gateway(["I am not JSON"])
    result = asyncio.run(pipeline.suggestions(gateway, "\n".join(LINES), JD))
    assert result.is_fallback is True
    assert result.suggested_edits


def test_provider_failure_propagates_and_releases_session(make_gateway):
    gateway, _ = make_gateway([ProviderFailure(FailureCause.RATE_LIMITED, "gemini"), _reply(40)])
    session = SessionStore().create(LINES, JD)

    with pytest.raises(ProviderFailure):
        asyncio.run(pipeline.optimize_cv(gateway, session))
    assert not session.is_busy("optimize")

    result = asyncio.run(pipeline.optimize_cv(gateway, session))
    assert result.match_score == 40


def test_manual_response_marks_source():
    session = SessionStore().create(LINES, JD)
    result = pipeline.load_manual_response(session, _reply(55, [FIRST_EDIT]))
    assert result.prompt_source == "manual"
    assert session.result is result
    assert session.state.accepted == {0}


def test_analysis_uses_job_description_feature(make_gateway):
    gateway, fake = make_gateway(['{"keywords": ["React"], "skills": [], "requirements": []}'])
    analysis = asyncio.run(pipeline.analyze_job_description(gateway, JD))
    assert analysis.keywords == ["React"]
    assert JD in fake.prompts[0]


def test_cover_letter_strips_placeholder_lines(make_gateway):
    letter_text = "[Date]\n\nDear Hiring Manager,\n\nI am excited to apply.\n\n[Your Address]\nBest regards,\nJane"
    gateway, _ = make_gateway([letter_text])

    letter = asyncio.run(pipeline.generate_cover_letter(gateway, LINES, JD))

    assert "[Date]" not in letter.text
    assert "[Your Address]" not in letter.text
    assert letter.text.startswith("Dear Hiring Manager,")
    assert letter.prompt_source == "template"


def test_job_extraction_has_no_fallback(make_gateway):
    gateway, _ = make_gateway(["Sorry, I cannot open links."])
    with pytest.raises(ResponseParseFailure):
        asyncio.run(pipeline.extract_job_from_url(gateway, "https://jobs.example.com/1"))


def test_job_extraction(make_gateway):
    gateway, fake = make_gateway(['{"title": "SRE", "company": "Acme"}'])
    posting = asyncio.run(pipeline.extract_job_from_url(gateway, "https://jobs.example.com/1"))
    assert posting.company == "Acme"
    assert posting.job_url == "https://jobs.example.com/1"
    assert "https://jobs.example.com/1" in fake.prompts[0]


def test_check_provider_reports_success_and_failure(make_gateway):
    gateway, _ = make_gateway(["Test successful", ProviderFailure(FailureCause.UNAUTHORIZED, "openai")])

    ok = asyncio.run(pipeline.check_provider(gateway, "gemini"))
    assert ok["success"] is True
    assert ok["response"] == "Test successful"

    failed = asyncio.run(pipeline.check_provider(gateway, "openai"))
    assert failed["success"] is False
    assert failed["cause"] == "Unauthorized"


SECOND_EDIT = {
    "section": "Experience",
    "originalBullet": "Led a team of 5.",
    "improvedBullet": "Led and mentored a team of 5 engineers.",
    "reason": "leadership",
}


class HeldProvider(ProviderClient):
    """Holds every call open until the test resolves its future."""

    provider_id = "held"

    def __init__(self) -> None:
        self.pending = []

    async def complete(self, prompt: str, options: RequestOptions) -> str:
        future = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        return await future

    async def wait_for_calls(self, count: int) -> None:
        while len(self.pending) < count:
            await asyncio.sleep(0)


async def _optimize_during_recalculation(optimize_lands_first: bool):
    provider = HeldProvider()
    gateway = ModelGateway({pid: provider for pid in PROVIDER_IDS}, default_model_settings())
    session = SessionStore().create(LINES, JD)
    pipeline.load_manual_response(session, _reply(61, [FIRST_EDIT]))

    optimize = asyncio.ensure_future(pipeline.optimize_cv(gateway, session))
    await provider.wait_for_calls(1)
    recalc = asyncio.ensure_future(pipeline.recalculate_session(gateway, session))
    await provider.wait_for_calls(2)

    optimize_call, recalc_call = provider.pending
    if optimize_lands_first:
        optimize_call.set_result(_reply(50, [SECOND_EDIT]))
        await optimize
        recalc_call.set_result(_reply(80))
        await recalc
    else:
        recalc_call.set_result(_reply(80))
        await recalc
        optimize_call.set_result(_reply(50, [SECOND_EDIT]))
        await optimize
    return session


PATCHED_LINES = ["Jane Doe", "Built 3 production web apps using React and Node.", "Led a team of 5."]


def test_recalculation_landing_after_optimize_keeps_its_own_edits():
    session = asyncio.run(_optimize_during_recalculation(optimize_lands_first=True))

    assert session.result.match_score == 80
    assert session.result.previous_match_score == 61
    assert session.edits == []
    assert session.lines == PATCHED_LINES
    assert [e.original_text for e in session.committed_edits] == ["Built web apps."]
    assert session.score_history == [61, 50, 80]


def test_optimize_landing_after_recalculation_is_dropped():
    session = asyncio.run(_optimize_during_recalculation(optimize_lands_first=False))

    assert session.result.match_score == 80
    assert session.lines == PATCHED_LINES
    assert [e.original_text for e in session.committed_edits] == ["Built web apps."]
    assert session.score_history == [61, 80]
