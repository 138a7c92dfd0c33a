"""LLM prompt templates for chapter enhancement."""
from typing import Optional

DEFAULT_PROMPT = """Please enhance this novel chapter translation with the following improvements:

1. Fix grammatical errors, punctuation mistakes, and spelling issues
2. Improve the narrative flow and overall readability
3. Ensure consistent character voice, tone, and gender pronouns throughout
4. Make dialogue sound more natural and conversational
5. Refine descriptions to be more vivid and engaging
6. Maintain the original plot points, character development, and story elements exactly
7. Streamline overly verbose sections while preserving important details
8. Ensure proper transitioning between scenes and ideas
9. Add bold section headings at scene changes, POV shifts, or topic transitions. If the original text already has section headings, incorporate them seamlessly and consistently. Keep the headings short and use only standard English letters and numbers in them.
10. **IMPORTANT:** Format game-like status windows, character stats, skill lists, or RPG system information into styled HTML boxes. Use a div with class="game-stats-box" to contain the exact text. For example, a status window like:
    Player: Mike
    Level: 0
    Equipment: None

    Should be formatted as:
    <div class="game-stats-box">
    Player: Mike
    Level: 0
    Equipment: None
    </div>

    Preserve all line breaks, formatting, and exact data within these status windows. Text in [ square brackets ] that reads like a system announcement belongs in such a box too, and consecutive bracketed boxes are combined into a single div.
11. Remove any advertising code snippets or irrelevant promotional content

Keep the core meaning of the original text intact while making it feel like a professionally translated novel. Preserve all original story elements including character names, locations, and plot points precisely.

Text in the form [PRESERVED_ELEMENT_n] is a placeholder for an image or a formatted box. Keep every placeholder exactly as written and in the same position.

Return only the enhanced chapter text, without commentary and without code fences."""

EMOJI_INSTRUCTION = (
    "Additional instruction: Add appropriate emojis next to dialogues to enhance "
    "emotional expressions. Place the emoji immediately after the quotation marks "
    "that end the dialogue. For example: \"I'm so happy!\" 😊 she said."
)


def part_note(current: int, total: int) -> str:
    """Instruction appended when a chapter is enhanced in several parts.

    Args:
        current: 1-based part number
        total: Number of parts
    """
    return (
        f"Note: This is part {current} of {total} parts. Please enhance this part "
        "while maintaining consistency with other parts."
    )


def build_system_prompt(
    title: str,
    base_prompt: str = DEFAULT_PROMPT,
    chunk_index: Optional[int] = None,
    total_chunks: Optional[int] = None,
    use_emoji: bool = False,
    site_prompt: str = "",
    permanent_prompt: str = ""
) -> str:
    """Assemble the system prompt for one enhancement call.

    Args:
        title: Chapter title
        base_prompt: Main enhancement instructions
        chunk_index: 0-based part index, if the chapter was split
        total_chunks: Number of parts, if the chapter was split
        use_emoji: Ask for emojis after dialogue
        site_prompt: Extra context for the source site
        permanent_prompt: User instructions added to every call

    Returns:
        Formatted prompt string
    """
    prompt = base_prompt

    if chunk_index is not None and total_chunks and total_chunks > 1:
        prompt += "\n\n" + part_note(chunk_index + 1, total_chunks)

    if use_emoji:
        prompt += "\n\n" + EMOJI_INSTRUCTION

    if site_prompt:
        prompt += "\n\n## Site-Specific Context:\n" + site_prompt

    if permanent_prompt:
        prompt += "\n\n## Always Follow These Instructions:\n" + permanent_prompt

    return f"{prompt}\n\n### Title:\n{title}"
