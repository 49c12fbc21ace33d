"""Configuration management for the Jinny voice chat relay."""
import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Keys (checked when a provider is first called, not at startup)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
GROQ_API_KEY = os.getenv("GROQ_API_KEY")

# Server Configuration
PORT = int(os.getenv("PORT", "3000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"
STATIC_DIR = os.getenv("STATIC_DIR", "public")

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000"
).split(",")

# Context Window Configuration
MAX_CONTEXT_TURNS = int(os.getenv("MAX_CONTEXT_TURNS", "10"))  # non-system turns
CONTEXT_MAX_AGE_SECONDS = int(os.getenv("CONTEXT_MAX_AGE_SECONDS", "3600"))
CONTEXT_SWEEP_INTERVAL_SECONDS = int(os.getenv("CONTEXT_SWEEP_INTERVAL_SECONDS", "3600"))
DISCONNECT_EVICTION_DELAY_SECONDS = int(os.getenv("DISCONNECT_EVICTION_DELAY_SECONDS", "3600"))

# Model Configuration
DEFAULT_MODEL = "llama-3.1-70b-versatile"

AI_MODELS = {
    "gpt-3.5-turbo-16k": {
        "provider": "openai",
        "max_tokens": 700,
        "temperature": 0.7,
        "top_p": 0.9,
        "presence_penalty": 0.6,
        "frequency_penalty": 0.3,
    },
    "llama-3.1-70b-versatile": {
        "provider": "groq",
        "max_tokens": 1024,
        "temperature": 1.0,
        "top_p": 1.0,
    },
}

SYSTEM_PROMPT = """You are Jinny, a warm and perceptive AI companion. Engage naturally as if in person, using conversational gestures and expressions. Keep responses concise yet meaningful.

Key traits:
- Speak naturally, as in a real conversation
- Show understanding through verbal gestures
- Build on previous context
- Guide users to related topics
- Adapt tone to match the user

Interaction style:
- Start with brief acknowledgment
- Give clear, focused responses
- End with relevant follow-up suggestions
- Remember key details about the user
- Keep technical terms simple unless user shows expertise

Example format: You might also be interested in [related topic] - would you like to explore that?

Remember: Focus on building rapport while being efficient with language. Suggest 1-2 relevant follow-ups based on user's interests and previous conversations."""

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
