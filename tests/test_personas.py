"""Persona table for the chat assistant."""

from panchayat.models import ChatCategory, Language
from panchayat.personas import BASE_PROMPTS, CATEGORY_FOCUS, system_prompt


def test_general_uses_base_prompt_only():
    assert system_prompt("en", "general") == BASE_PROMPTS[Language.ENGLISH]
    assert system_prompt("hi", "general") == BASE_PROMPTS[Language.HINDI]


def test_category_focus_appended():
    prompt = system_prompt(Language.ENGLISH, ChatCategory.AGRICULTURE)
    assert prompt.startswith(BASE_PROMPTS[Language.ENGLISH])
    assert prompt.endswith(CATEGORY_FOCUS[Language.ENGLISH][ChatCategory.AGRICULTURE])


def test_hindi_prompts():
    prompt = system_prompt("hi", "health")
    assert "हिंदी में उत्तर दें" in prompt
    assert "स्वास्थ्य" in prompt


def test_unknown_values_fall_back():
    assert system_prompt("fr", "astrology") == BASE_PROMPTS[Language.ENGLISH]
    assert system_prompt("xx", "weather") == system_prompt("en", "weather")


def test_every_category_covered():
    for language in Language:
        for category in ChatCategory:
            assert system_prompt(language, category)
        assert set(CATEGORY_FOCUS[language]) == set(ChatCategory) - {ChatCategory.GENERAL}
