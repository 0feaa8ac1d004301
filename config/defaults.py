from __future__ import annotations

DEFAULT_CONFIG_PATH = "config.json"
DEFAULT_DB_PATH = "data/memory.db"

DM_GUILD_SENTINEL = "dm"

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful Discord bot assistant. Respond to users in a friendly and helpful way. "
    "Keep your responses concise but informative."
)

DEFAULT_PERSONALITY_TRAITS = {
    "friendliness": 5,
    "formality": 5,
    "humor": 5,
    "enthusiasm": 5,
    "helpfulness": 5,
    "verbosity": 5,
}

RESPONSE_LENGTH_GUIDE = {
    "short": "Keep responses brief and to the point (1-2 sentences).",
    "medium": "Provide moderate length responses (2-4 sentences).",
    "long": "Give detailed and comprehensive responses when appropriate.",
}

MEMORY_ENTRY_TYPES = ("conversation", "fact", "preference")

FACT_TYPES = (
    "name",
    "job",
    "location",
    "hobby",
    "preference",
    "skill",
    "interest",
    "goal",
    "experience",
    "other",
)

DEFAULT_FACT_CONFIDENCE = 1.0
DEFAULT_MEMORY_IMPORTANCE = 0.5

# SQLite busy timeout, seconds. Keeps storage calls bounded when the file is locked.
DB_TIMEOUT_SECONDS = 5.0

ADMIN_MAX_PAGE_SIZE = 100
