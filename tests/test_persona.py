from __future__ import annotations

import os

from alcancia.persona import DEFAULT_PERSONA_PATH, PersonaConfig


def test_packaged_persona_prompt():
    prompt = PersonaConfig().get_prompt()
    assert prompt.startswith("Eres Don Jaimito")
    assert "alcancía digital" in prompt
    assert "[[alcancia:" in prompt


def test_sections_follow_fixed_order(tmp_path):
    path = tmp_path / "persona.yaml"
    path.write_text("accounts: cuentas\nidentity:\n  - quien\ntone: tono\n", encoding="utf-8")

    assert PersonaConfig(default_path=path).get_prompt() == "quien tono cuentas"


def test_override_replaces_sections(tmp_path):
    override = tmp_path / "override.yaml"
    override.write_text("tone:\n  - 'Hablas   muy   formal.'\n", encoding="utf-8")

    prompt = PersonaConfig(override_path=override).get_prompt()
    assert "Hablas muy formal." in prompt
    assert "Hablas siempre en español" not in prompt


def test_prompt_reloads_when_file_changes(tmp_path):
    path = tmp_path / "persona.yaml"
    path.write_text("identity: uno\n", encoding="utf-8")
    os.utime(path, (1_000_000, 1_000_000))
    persona = PersonaConfig(default_path=path)
    assert persona.get_prompt() == "uno"

    path.write_text("identity: dos\n", encoding="utf-8")
    os.utime(path, (2_000_000, 2_000_000))
    assert persona.get_prompt() == "dos"


def test_broken_override_is_ignored(tmp_path):
    override = tmp_path / "override.yaml"
    override.write_text("identity: [sin cerrar\n", encoding="utf-8")

    assert PersonaConfig(override_path=override).get_prompt() == PersonaConfig(
        default_path=DEFAULT_PERSONA_PATH
    ).get_prompt()
