from __future__ import annotations

from enum import Enum


class AIProvider(str, Enum):
    GEMINI = "gemini-cli"
    CLAUDE = "claude"
    CODEX = "codex"
    QWEN = "qwen"
    IFLOW = "iflow"
    ANTIGRAVITY = "antigravity"
    VERTEX = "vertex"
    KIRO = "kiro"
    COPILOT = "github-copilot"
    CURSOR = "cursor"
    TRAE = "trae"
    GLM = "glm"

    @property
    def display_name(self) -> str:
        return PROVIDER_DISPLAY_NAMES.get(self, self.value)


PROVIDER_DISPLAY_NAMES: dict[AIProvider, str] = {
    AIProvider.GEMINI: "Gemini CLI",
    AIProvider.CLAUDE: "Claude Code",
    AIProvider.CODEX: "Codex (OpenAI)",
    AIProvider.QWEN: "Qwen Code",
    AIProvider.IFLOW: "iFlow",
    AIProvider.ANTIGRAVITY: "Antigravity",
    AIProvider.VERTEX: "Vertex AI",
    AIProvider.KIRO: "Kiro",
    AIProvider.COPILOT: "GitHub Copilot",
    AIProvider.CURSOR: "Cursor",
    AIProvider.TRAE: "Trae",
    AIProvider.GLM: "GLM",
}

_PROVIDER_ALIASES: dict[str, AIProvider] = {
    "copilot": AIProvider.COPILOT,
}


def parse_provider(value: str | AIProvider | None) -> AIProvider | None:
    """Map a provider id (or accepted alias) onto the enumeration.

    Returns ``None`` for anything outside the fixed provider set.
    """
    if isinstance(value, AIProvider):
        return value
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if not normalized:
        return None
    alias = _PROVIDER_ALIASES.get(normalized)
    if alias is not None:
        return alias
    try:
        return AIProvider(normalized)
    except ValueError:
        return None


def provider_ids() -> list[str]:
    return [provider.value for provider in AIProvider]
