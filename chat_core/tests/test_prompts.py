import pytest

from chat_core.prompts import DEFAULT_SYSTEM_INSTRUCTION, list_presets, load_system_prompt


def test_all_presets_load():
    presets = list_presets()
    assert [p.id for p in presets] == ["default", "translator", "coder", "writer", "academic"]
    for preset in presets:
        assert preset.content
        assert preset.content == load_system_prompt(preset.id)


def test_default_instruction_matches_default_preset():
    assert DEFAULT_SYSTEM_INSTRUCTION == load_system_prompt("default")


def test_unknown_preset():
    with pytest.raises(KeyError):
        load_system_prompt("pirate")
