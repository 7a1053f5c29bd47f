"""Unit tests for scene splitting and scene prompts."""
from story_visuals.prompts import build_scene_prompt
from story_visuals.scenes import split_scenes


class TestSplitScenes:
    def test_splits_on_blank_lines_in_order(self) -> None:
        text = "Scene one text.\n\nScene two text.\n\nScene three text."
        assert split_scenes(text) == ["Scene one text.", "Scene two text.", "Scene three text."]

    def test_drops_empty_and_whitespace_segments(self) -> None:
        text = "\n\nFirst.\n\n   \n\n\n\nSecond.\n\n"
        assert split_scenes(text) == ["First.", "Second."]

    def test_single_newlines_stay_inside_a_scene(self) -> None:
        assert split_scenes("Line a\nline b\n\nNext") == ["Line a\nline b", "Next"]

    def test_windows_line_endings(self) -> None:
        assert split_scenes("One.\r\n\r\nTwo.") == ["One.", "Two."]

    def test_empty_or_whitespace_input_gives_no_scenes(self) -> None:
        assert split_scenes("") == []
        assert split_scenes("   \n\n \t ") == []
        assert split_scenes(None) == []

    def test_scene_count_matches_non_empty_paragraphs(self) -> None:
        paragraphs = [f"Paragraph {i}." for i in range(12)]
        text = "\n\n\n\n".join(paragraphs)
        assert len(split_scenes(text)) == len(paragraphs)


class TestBuildScenePrompt:
    def test_is_deterministic(self) -> None:
        a = build_scene_prompt("Amina waves hello.", "Amina")
        assert a == build_scene_prompt("Amina waves hello.", "Amina")

    def test_includes_scene_character_and_constraints(self) -> None:
        prompt = build_scene_prompt("Amina waves hello.", "Amina")
        assert "'Amina waves hello.'" in prompt
        assert "Amina" in prompt
        assert "reference image" in prompt
        assert "1024x1024" in prompt
        assert "DO NOT include any text" in prompt
        assert "actively" in prompt

    def test_blank_character_name_falls_back(self) -> None:
        assert "a child" in build_scene_prompt("A park.", "  ")
