"""
Portal configuration. Single source of truth for lifetimes, tolerances,
page limits, and vision provider routing.

Import from here in routes and services rather than hardcoding values.
"""
from __future__ import annotations

import os

# ── Environment ────────────────────────────────────────────────────────────────
ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
IS_PRODUCTION: bool = ENVIRONMENT.lower() == "production"

UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "/tmp/landdev_uploads")

# ── Auth lifetimes ─────────────────────────────────────────────────────────────
SESSION_COOKIE_NAME: str = "session"
SESSION_TTL_DAYS: int = 7
PASSWORD_RESET_TTL_HOURS: int = 1
INVITATION_TTL_DAYS: int = 7
MIN_PASSWORD_LEN: int = 8
SESSION_COOKIE_SECURE: bool = os.getenv("SESSION_COOKIE_SECURE", "").lower() in ("1", "true", "yes") or IS_PRODUCTION

VALID_THEMES: tuple[str, ...] = ("default", "tokyo-night", "console", "ocean")
DEFAULT_THEME: str = "default"

# Seeded when the roles table is empty: (name, description, view, edit, delete, invite, manage_roles)
DEFAULT_ROLES: list[tuple] = [
    ("Admin", "Full access to the group", 1, 1, 1, 1, 1),
    ("Editor", "Can view and edit", 1, 1, 0, 0, 0),
    ("Viewer", "Read-only access", 1, 0, 0, 0, 0),
]
ADMIN_ROLE_NAME: str = "Admin"

# ── Plan extraction ────────────────────────────────────────────────────────────
# 4.0x ≈ 600 DPI for survey plans rendered from 150 DPI page units
PDF_RENDER_SCALE: float = 4.0
MAX_ANALYSIS_PAGES: int = 10

# Variance tolerances between database values and values read off a plan
AREA_TOLERANCE_SQM: float = 0.5
LENGTH_TOLERANCE_M: float = 0.1

CROSS_REFERENCE_CONFIDENCE: float = 0.85

# Systematic-bias detection in box calibration
BIAS_MIN_SAMPLES: int = 2
BIAS_MIN_MEAN_DIFF: float = 0.5
CALIBRATED_FIELDS: tuple[str, ...] = ("area", "frontage", "depth")

# ── Vision providers ───────────────────────────────────────────────────────────
# provider key -> (litellm model string, api key env vars, display label)
VISION_PROVIDERS: dict[str, dict] = {
    "gemini": {
        "model": os.getenv("VISION_GEMINI_MODEL", "gemini/gemini-2.0-flash"),
        "env": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
        "label": "Gemini 2.0 Flash",
    },
    "grok": {
        "model": os.getenv("VISION_GROK_MODEL", "xai/grok-2-vision-1212"),
        "env": ("XAI_API_KEY",),
        "label": "Grok 2 Vision (xAI)",
    },
    "openai": {
        "model": os.getenv("VISION_OPENAI_MODEL", "openai/gpt-5-mini"),
        "env": ("OPENAI_API_KEY",),
        "label": "GPT-5 Mini (OpenAI)",
    },
    "groq": {
        "model": os.getenv("VISION_GROQ_MODEL", "groq/meta-llama/llama-4-scout-17b-16e-instruct"),
        "env": ("GROQ_API_KEY",),
        "label": "Llama 4 Scout (Groq)",
    },
}

# Fallback order per endpoint
EXTRACT_FALLBACKS: tuple[str, ...] = ("gemini", "openai")
VERIFY_FALLBACKS: tuple[str, ...] = ("gemini",)
POS_PROVIDERS: tuple[str, ...] = ("gemini",)
OCR_FALLBACKS: tuple[str, ...] = ("gemini", "grok")

EXTRACT_MAX_TOKENS: int = 16384
VERIFY_MAX_TOKENS: int = 8192
CROSS_REFERENCE_MAX_TOKENS: int = 4096
POS_MAX_TOKENS: int = 8192
OCR_MAX_TOKENS: int = 50
