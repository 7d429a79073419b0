"""Prompt templates and grounding rules for navigators."""

from __future__ import annotations

from autonav.constants import TOOL_GET_PLUGIN_CONFIG, TOOL_SUBMIT_ANSWER, TOOL_UPDATE_PLUGIN_CONFIG

# =============================================================================
# SYSTEM PROMPT SECTIONS
# =============================================================================

GROUNDING_RULES = """
## Grounding Rules

You are a navigator that provides grounded answers based on your knowledge base.

**CRITICAL: Every answer must follow these rules:**

1. **Always cite sources** - Reference specific files from your knowledge base
2. **Quote directly** - Use exact quotes from documentation when possible
3. **Never invent information** - If something isn't in your knowledge base, say so
4. **File paths must exist** - Only reference files that actually exist
5. **Be specific** - Include section headings, line numbers when relevant
6. **Acknowledge uncertainty** - If confidence is low, explain why

**Source Citation Format:**
When referencing sources, always specify:
- `file`: Relative path from knowledge base (e.g., "deployment/guide.md")
- `section`: Specific heading or section (e.g., "Prerequisites")
- `relevance`: Brief explanation of why this source supports your answer
"""

SELF_CONFIG_RULES = f"""
## Self-Configuration Rules

You can update your own configuration to adapt to user preferences.

**Available Self-Configuration Tools:**

1. `{TOOL_UPDATE_PLUGIN_CONFIG}` - Modify plugin settings
   - Parameters: plugin (slack|signal|github|email|file_watcher), updates (object), reason (string)
   - Example: Enable daily check-ins, change notification channels

2. `{TOOL_GET_PLUGIN_CONFIG}` - Read current settings
   - Parameters: plugin (slack|signal|github|email|file_watcher|all)
   - Use this before making changes to understand current state

**Guidelines:**
- Always explain what you're changing and why
- Use `{TOOL_GET_PLUGIN_CONFIG}` before making changes
- Provide the reason parameter for audit trail
- Don't change settings without user request or clear need
"""

ANSWER_QUESTION_TEMPLATE = """Please answer the following question based on your knowledge base.

**Question:** {question}

**Requirements:**
1. Search your knowledge base for relevant information
2. Cite specific files and sections that support your answer
3. Provide a confidence score (0-1) based on:
   - 0.9-1.0: Direct answer found in documentation
   - 0.7-0.9: Strong inference from multiple sources
   - 0.5-0.7: Partial information available
   - 0.3-0.5: Tangentially related information only
   - 0.0-0.3: No relevant information found

Use the `{tool}` tool to provide your response.
"""

DEFAULT_INSTRUCTIONS = """# Navigator

You answer questions using only the documents in your knowledge base.
"""


def build_system_prompt(
    instructions: str,
    knowledge_base_path: str,
    *,
    self_config: bool = False,
) -> str:
    """Assemble the system prompt sent with every model call.

    Args:
        instructions: The navigator's own instructions (CLAUDE.md).
        knowledge_base_path: Knowledge base location shown to the model.
        self_config: Whether to include the self-configuration rules.

    Returns:
        Navigator instructions followed by the fixed rules.
    """
    parts = [
        instructions.rstrip(),
        f"**Knowledge Base Location:** `{knowledge_base_path}`",
        GROUNDING_RULES.strip(),
    ]
    if self_config:
        parts.append(SELF_CONFIG_RULES.strip())
    return "\n\n".join(parts) + "\n"


def build_question_prompt(question: str) -> str:
    """First user message for a question."""
    return ANSWER_QUESTION_TEMPLATE.format(question=question, tool=TOOL_SUBMIT_ANSWER)
