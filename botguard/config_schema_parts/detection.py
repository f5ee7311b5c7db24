"""Config schema: Heuristic bot classifier policy.

Synopsis:
Defines the score weights and thresholds used by the heuristic classifier,
plus the block duration recorded for classifier-triggered blocks.

Glossary:
- Bot score: Additive heuristic score for one request's metadata.
- Block threshold: Score at or above which the request is blocked.
"""

# --- Detection fields ---
# Purpose: Provide classifier policy configuration definitions.
FIELDS = [
    {
        "key": "BOT_DETECTION_UA_WEIGHT",
        "cast": "int",
        "default": 30,
        "description": "Score added when the user agent matches an automation pattern.",
        "min_value": 0,
    },
    {
        "key": "BOT_DETECTION_MISSING_HEADER_WEIGHT",
        "cast": "int",
        "default": 15,
        "description": "Score added per missing accept/accept-language/accept-encoding header.",
        "min_value": 0,
    },
    {
        "key": "BOT_DETECTION_SHORT_UA_WEIGHT",
        "cast": "int",
        "default": 25,
        "description": "Score added for an empty or too short user agent.",
        "min_value": 0,
    },
    {
        "key": "BOT_DETECTION_SHORT_UA_LENGTH",
        "cast": "int",
        "default": 10,
        "description": "User agents shorter than this are treated as suspicious.",
        "min_value": 1,
    },
    {
        "key": "BOT_DETECTION_HIGH_RATE_WEIGHT",
        "cast": "int",
        "default": 30,
        "description": "Score added when the caller reports a high request rate.",
        "min_value": 0,
    },
    {
        "key": "BOT_DETECTION_HIGH_RATE_THRESHOLD",
        "cast": "int",
        "default": 50,
        "description": "Reported requests-in-window above this count as a high rate.",
        "min_value": 0,
    },
    {
        "key": "BOT_DETECTION_MISSING_LANGUAGE_WEIGHT",
        "cast": "int",
        "default": 20,
        "description": "Score added when Accept-Language is absent.",
        "min_value": 0,
    },
    {
        "key": "BOT_DETECTION_BOT_THRESHOLD",
        "cast": "int",
        "default": 50,
        "description": "Score at or above which a request is flagged as a bot.",
        "min_value": 1,
    },
    {
        "key": "BOT_DETECTION_BLOCK_THRESHOLD",
        "cast": "int",
        "default": 70,
        "description": "Score at or above which a request is blocked.",
        "min_value": 1,
    },
    {
        "key": "BOT_DETECTION_BLOCK_SECONDS",
        "cast": "int",
        "default": 3600,
        "description": "Duration of a classifier-triggered IP block.",
        "min_value": 1,
    },
    {
        "key": "BOT_DETECTION_ADMIN_API_KEY",
        "cast": "str",
        "default": None,
        "description": "Bearer token for the /api/security reporting routes.",
        "secret": True,
        "note": "Reporting routes answer 403 while this is unset.",
    },
]

# --- Detection section ---
# Purpose: Provide section metadata for checklist grouping.
SECTION = {
    "key": "detection",
    "title": "Bot Detection Policy",
    "note": "Tune weights and thresholds here; call sites read them from the policy object.",
}
