from think_tank.core.models import Persona
from think_tank.routing.mentions import MENTION_SYSTEM_PROMPT, enhance_system_prompt, parse


def _persona(name: str) -> Persona:
    return Persona(id=f"id-{name.lower().replace(' ', '-')}", name=name, provider="openai", model="gpt-4o-mini")


ALICE = _persona("Alice")
BOB = _persona("Bob")


def test_inline_question_makes_next_speaker():
    result = parse("@Alice can you help?", [ALICE, BOB])
    assert result.mentions == ["Alice"]
    assert result.next_speaker == ALICE.id


def test_longer_word_is_not_a_mention():
    result = parse("I talked to @Alicebot", [ALICE])
    assert result.mentions == []
    assert result.next_speaker is None


def test_directive_is_rewritten_and_promoted():
    result = parse("[MENTION:Bob:clarify] thoughts?", [ALICE, BOB])
    assert result.mentions == ["Bob"]
    assert "@Bob" in result.content
    assert "[MENTION" not in result.content
    assert result.next_speaker == BOB.id
    assert result.reasons == {"Bob": "clarify"}


def test_inline_without_question_is_not_promoted():
    result = parse("I agree with @Bob on this.", [ALICE, BOB])
    assert result.mentions == ["Bob"]
    assert result.next_speaker is None


def test_directive_promoted_without_question():
    result = parse("Over to [MENTION:Alice].", [ALICE, BOB])
    assert result.content == "Over to @Alice."
    assert result.next_speaker == ALICE.id


def test_case_insensitive_and_deduplicated_in_first_seen_order():
    result = parse("@bob and @ALICE, then @Bob again?", [ALICE, BOB])
    assert result.mentions == ["Bob", "Alice"]
    assert result.next_speaker == BOB.id


def test_first_qualifying_mention_in_document_order_wins():
    result = parse("@Alice said so, but [MENTION:Bob:review] please check", [ALICE, BOB])
    # no question mark, so only the directive qualifies
    assert result.next_speaker == BOB.id
    assert result.mentions == ["Alice", "Bob"]


def test_unknown_directive_left_untouched():
    text = "[MENTION:Zed:why] hello?"
    result = parse(text, [ALICE, BOB])
    assert result.content == text
    assert result.mentions == []


def test_prefix_name_does_not_steal_longer_name():
    al = _persona("Al")
    result = parse("@Alice, ready?", [al, ALICE])
    assert result.mentions == ["Alice"]


def test_longest_name_wins_at_same_position():
    ann = _persona("Ann")
    ann_lee = _persona("Ann Lee")
    result = parse("@Ann Lee what now?", [ann, ann_lee])
    assert result.mentions == ["Ann Lee"]
    assert result.next_speaker == ann_lee.id


def test_regex_characters_in_names_are_escaped():
    odd = _persona("C++ Guru")
    result = parse("Ask @C++ Guru?", [odd])
    assert result.mentions == ["C++ Guru"]


def test_punctuation_after_name_still_matches():
    result = parse("Thanks @Bob!", [BOB])
    assert result.mentions == ["Bob"]


def test_digits_and_underscore_end_a_name():
    result = parse("@Alice2 and @Bob_ any ideas?", [ALICE, BOB])
    assert result.mentions == ["Alice", "Bob"]
    assert result.next_speaker == ALICE.id


def test_enhance_system_prompt_lists_other_participants():
    prompt = enhance_system_prompt("You are Alice.", [ALICE, BOB], ALICE)
    assert prompt.startswith("You are Alice.")
    assert MENTION_SYSTEM_PROMPT.strip() in prompt
    assert "@Bob" in prompt.split("Other participants:")[1]
    assert "@Alice" not in prompt.split("Other participants:")[1]


def test_enhance_system_prompt_alone_is_unchanged():
    assert enhance_system_prompt("solo", [ALICE], ALICE) == "solo"
