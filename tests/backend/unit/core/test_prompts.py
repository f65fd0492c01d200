"""Tests for system prompt resolution."""

from __future__ import annotations

from datetime import date

from core.prompts import TOKEN_TODAY, build_default_system_prompt, resolve_system_prompt


class TestDefaultSystemPrompt:
    def test_today_is_substituted(self) -> None:
        prompt = build_default_system_prompt(date(2025, 3, 14))
        assert "Today's date is 2025-03-14." in prompt
        assert TOKEN_TODAY not in prompt

    def test_defaults_to_current_date(self) -> None:
        assert date.today().isoformat() in build_default_system_prompt()


class TestResolveSystemPrompt:
    def test_override_used_verbatim(self) -> None:
        assert resolve_system_prompt("You are a pirate.") == "You are a pirate."

    def test_blank_override_falls_back(self) -> None:
        assert resolve_system_prompt("   ") == build_default_system_prompt()

    def test_none_falls_back(self) -> None:
        assert "helpful assistant" in resolve_system_prompt(None)
