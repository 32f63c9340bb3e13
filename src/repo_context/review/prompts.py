"""Prompt templates and JSON schemas for the review loop.

Each LLM call in the loop is a structured ``generate`` request: the template
is rendered with ``str.format`` and the schema is sent as the response format.
"""

from .models import PlanAction, Severity

# Remaining paths listed in one planning prompt
PLAN_PATHS_LIMIT = 40

PLAN_SCHEMA = {
    "type": "object",
    "required": ["done", "next_action"],
    "properties": {
        "done": {"type": "boolean", "description": "True when review is complete"},
        "next_action": {
            "type": "string",
            "enum": [a.value for a in PlanAction],
            "description": "What to do next",
        },
        "target": {
            "type": "string",
            "description": "File path when next_action is review_file",
        },
        "reasoning": {"type": "string", "description": "Brief reason for this choice"},
    },
}

FINDINGS_SCHEMA = {
    "type": "object",
    "required": ["findings"],
    "properties": {
        "findings": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["message"],
                "properties": {
                    "file": {"type": "string"},
                    "line": {"type": ["integer", "null"]},
                    "rule": {"type": "string"},
                    "message": {"type": "string"},
                    "severity": {"type": "string", "enum": [s.value for s in Severity]},
                },
            },
        },
        "observation": {"type": "string"},
    },
}

SUMMARY_SCHEMA = {
    "type": "object",
    "required": ["summary"],
    "properties": {"summary": {"type": "string"}},
}

PLAN_PROMPT = """You are planning the next step of a code review. Review focus: {focus}

{state_summary}

Remaining files not yet reviewed (choose one path exactly as listed, or say summarize/done):
{remaining}

If there are remaining files, set next_action to "review_file" and target to one path from the list. When no files remain or you are done, set next_action to "done" and done to true.
Return JSON: done (boolean), next_action ("review_file" | "summarize" | "done"), target (path when review_file), reasoning (short).
"""

REVIEW_PROMPT = """You are a code reviewer. Review focus: {focus}.

Flag style issues, possible bugs, and unclear code that relate to the focus.

File: {path}

--- file content ---
{content}
--- end ---

Return JSON with:
- "findings": array of {{ "file" (optional), "line" (optional number), "rule" (e.g. "naming", "method_length"), "message" (short), "severity" ("suggestion" | "warning" | "error") }}
- "observation": one short sentence summarizing this file (optional)
"""

SUMMARY_PROMPT = """Code review summary. Focus was: {focus}
Files reviewed: {reviewed_paths}
Findings:
{findings}

Return JSON with one key "summary": a short paragraph for the developer (priorities, main risks, and one or two concrete next steps).
"""

TRUNCATION_MARKER = "\n... [truncated: showing first {shown} of {total} chars]"
