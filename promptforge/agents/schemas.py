"""
JSON schemas for structured refinement, critique and evaluation output.
"""

_PROMPT_FIELD_PROPERTIES = {
    "role": {"type": "string", "description": "The persona/expertise"},
    "instruction": {"type": "string", "description": "The core task"},
    "context": {"type": "string", "description": "The background/audience"},
    "constraints": {"type": "string", "description": "The limitations/rules"},
    "evaluation": {"type": "string", "description": "The success criteria/examples"},
}

# Vague request -> complete RICCE prompt
RICCE_PROMPT_SCHEMA = {
    "type": "object",
    "title": "RiccePrompt",
    "additionalProperties": False,
    "properties": _PROMPT_FIELD_PROPERTIES,
    "required": ["role", "instruction", "context", "constraints", "evaluation"],
}

# Prompt critique with optional per-field rewrites
PROMPT_ANALYSIS_SCHEMA = {
    "type": "object",
    "title": "PromptAnalysis",
    "additionalProperties": False,
    "properties": {
        "feedback": {"type": "string"},
        "improvements": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                name: {"type": "string"} for name in _PROMPT_FIELD_PROPERTIES
            },
        },
    },
    "required": ["feedback", "improvements"],
}

# Output graded against the prompt's evaluation criteria
OUTPUT_EVALUATION_SCHEMA = {
    "type": "object",
    "title": "OutputEvaluation",
    "additionalProperties": False,
    "properties": {
        "score": {"type": "number", "minimum": 0, "maximum": 100},
        "critique": {"type": "string"},
        "suggestions": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["score", "critique", "suggestions"],
}
