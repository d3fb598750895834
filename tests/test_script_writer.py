import pytest
from fakes import FakeResponder, FakeTextLLM, words

from agents.continuity_agent import ContinuityBibleBuilder
from agents.outline_planner import placeholder_outline
from agents.script_writer import ScriptWriter
from config import EngineSettings
from core.budget import TimeBudget
from core.errors import CandidatesExhaustedError, DomainGenerationError

# Small pages keep every draft short enough to skip tokenizer-based truncation.
CONFIG = EngineSettings(WORDS_PER_PAGE=5)


@pytest.fixture(autouse=True)
def word_token_counts(monkeypatch):
    monkeypatch.setattr(
        "agents.script_writer.count_tokens", lambda text, model: len(text.split())
    )


def _plans(*args):
    return {
        "chunks": [
            {
                "part": part,
                "startScene": 0,
                "endScene": 0,
                "startState": f"State before part {part}.",
                "endState": f"State after part {part}.",
                "mustInclude": [f"beat {part}"],
                "mustAvoid": ["a reset"],
            }
            for part in (1, 2, 3)
        ]
    }


def _writer(replies, plan_handler=lambda *a: None) -> tuple[ScriptWriter, FakeTextLLM, FakeResponder]:
    llm = FakeTextLLM(replies)
    responder = FakeResponder(plan_handler)
    writer = ScriptWriter(llm, ContinuityBibleBuilder(responder, CONFIG), CONFIG)
    return writer, llm, responder


@pytest.mark.asyncio
async def test_single_pass_for_short_films():
    outline = placeholder_outline("A courier", "thriller", 12)
    writer, llm, responder = _writer(["FADE IN:\n\n" + words(50) + "\n\nTHE END"])

    draft = await writer.write(outline, "10 min", "thriller", idea="A courier")

    assert draft.chunk_count == 1
    assert not draft.used_continuity_bible
    assert draft.top_off_passes == 0
    assert draft.target_pages == 10
    assert draft.estimated_pages == 10.8
    assert draft.text.startswith("FADE IN:")
    assert llm.stages == ["Drafting"]
    assert "FILM IDEA: A courier" in llm.prompts[0]
    assert responder.calls == []


@pytest.mark.asyncio
async def test_short_draft_is_topped_off_and_keeps_single_ending():
    outline = placeholder_outline("A courier", "thriller", 12)
    writer, llm, _ = _writer(
        ["FADE IN:\n\n" + words(20) + "\n\nTHE END", words(30, "more")]
    )

    draft = await writer.write(outline, "10 min", "thriller")

    assert draft.top_off_passes == 1
    assert llm.stages == ["Drafting", "TopOff"]
    assert "about 6 page(s) short" in llm.prompts[1]
    assert draft.text.count("THE END") == 1
    assert draft.text.endswith("THE END")
    assert draft.text.index("more") < draft.text.index("THE END")
    assert draft.estimated_pages == 10.8


@pytest.mark.asyncio
async def test_long_script_is_written_in_planned_chunks():
    outline = placeholder_outline("A courier", "thriller", 27)
    writer, llm, responder = _writer(
        [
            "FADE IN:\n\n" + words(50, "alpha"),
            words(50, "beta"),
            words(50, "gamma") + "\n\nTHE END",
        ],
        _plans,
    )

    draft = await writer.write(outline, "30 min", "thriller")

    assert draft.chunk_count == 3
    assert draft.used_continuity_bible
    assert draft.top_off_passes == 0
    assert responder.schema_names() == ["continuity_bible"]
    assert "part 2 of 3" in llm.prompts[1]
    assert "At the start of this part: State before part 2." in llm.prompts[1]
    assert "THE SCREENPLAY SO FAR ENDS WITH:" in llm.prompts[1]
    assert "10. " in llm.prompts[1] and "19. " not in llm.prompts[1]
    assert 'Begin with "FADE IN:"' in llm.prompts[0]
    assert 'Finish with "THE END"' in llm.prompts[2]
    text = draft.text
    assert text.index("alpha") < text.index("beta") < text.index("gamma")
    assert text.count("FADE IN:") == 1 and text.count("THE END") == 1


@pytest.mark.asyncio
async def test_failed_chunk_is_skipped_and_draft_topped_off():
    outline = placeholder_outline("A courier", "thriller", 27)
    writer, llm, _ = _writer(
        [
            "FADE IN:\n\n" + words(50, "alpha"),
            CandidatesExhaustedError(["m"], None),
            words(50, "gamma") + "\n\nTHE END",
            words(50, "delta"),
        ]
    )

    draft = await writer.write(outline, "30 min", "thriller")

    assert not draft.used_continuity_bible
    assert draft.top_off_passes == 1
    assert llm.stages == ["Drafting", "Drafting", "Drafting", "TopOff"]
    assert "CONTINUITY:" not in llm.prompts[0]
    assert "beta" not in draft.text
    assert draft.text.endswith("THE END")


@pytest.mark.asyncio
async def test_no_text_raises():
    outline = placeholder_outline("A courier", "thriller", 12)
    writer, _, _ = _writer([""])
    with pytest.raises(DomainGenerationError):
        await writer.write(outline, "10 min", "thriller")


@pytest.mark.asyncio
async def test_spent_budget_raises_without_calls():
    outline = placeholder_outline("A courier", "thriller", 27)
    writer, llm, responder = _writer([])
    with pytest.raises(DomainGenerationError):
        await writer.write(outline, "30 min", "thriller", TimeBudget(1))
    assert llm.prompts == []
    assert responder.calls == []


@pytest.mark.asyncio
async def test_generation_tokens_shrink_to_fit_context_window():
    config = EngineSettings(
        WORDS_PER_PAGE=5, MAX_CONTEXT_TOKENS=2000, MAX_DRAFT_TOKENS=8192
    )
    llm = FakeTextLLM(["FADE IN:\n\n" + words(50) + "\n\nTHE END"])
    writer = ScriptWriter(llm, ContinuityBibleBuilder(FakeResponder(lambda *a: None), config), config)
    outline = placeholder_outline("A courier", "thriller", 12)

    await writer.write(outline, "10 min", "thriller")

    prompt_tokens = len(llm.prompts[0].split())
    assert llm.max_tokens == [2000 - prompt_tokens - 200]


@pytest.mark.asyncio
async def test_prompt_filling_context_window_is_not_sent():
    config = EngineSettings(WORDS_PER_PAGE=5, MAX_CONTEXT_TOKENS=300)
    llm = FakeTextLLM(["FADE IN:\n\n" + words(50) + "\n\nTHE END"])
    writer = ScriptWriter(llm, ContinuityBibleBuilder(FakeResponder(lambda *a: None), config), config)
    outline = placeholder_outline("A courier", "thriller", 12)

    with pytest.raises(DomainGenerationError):
        await writer.write(outline, "10 min", "thriller")
    assert llm.prompts == []
