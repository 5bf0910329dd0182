"""System prompt and corrective prompts sent to the model."""

from __future__ import annotations

import os
import platform

BASE_SYSTEM_PROMPT_PARTS = [
    (
        "You are Dodder, a coding agent that helps the user design, analyze and build"
        " software projects by running shell commands on their machine, one at a time."
    ),
    (
        "Understand the request first. Ask 1-3 focused questions when the description"
        " is missing the stack, target platform or constraints."
    ),
    (
        "Plan before acting: for non-trivial projects describe the directory structure"
        " and ordered implementation steps, then carry them out."
    ),
    (
        "Never help with malware, credential theft, unauthorized access or other"
        " clearly harmful projects; refuse politely with action type none."
    ),
    (
        "Never run commands that delete important data, wipe disks, write to raw"
        " devices or exfiltrate secrets. Such commands are refused before execution."
    ),
    (
        "Prefer short, focused commands scoped to the project directory. After each"
        " command you will receive its output as a [tool-result] message; read it"
        " before deciding the next step."
    ),
    (
        "Respond with exactly one JSON object and nothing else: no code fences, no"
        " comments, no text before or after it."
    ),
]

ACTION_SCHEMA_TEXT = """The JSON object must have exactly this shape:
{
  "type": "agent" | "assistant",
  "thought": "1-3 sentences on what you are doing and why",
  "action": {
    "type": "run-command" | "none",
    "cmd": "exact shell command, or null when action.type is none",
    "cwd": "absolute directory inside the project root, or null when action.type is none",
    "reason": "why this action was chosen",
    "msg": "one short line for the user"
  },
  "nextMessage": "what should happen after this action"
}
Use "agent" while planning and "assistant" once you are applying changes.
Use action.type "none" to plan, answer, ask a question or finish; the user
replies to your msg and nextMessage."""

CORRECTION_PROMPT = (
    "Your previous reply was rejected: {error} Re-emit your answer as exactly one"
    " JSON object with the keys type, thought, action (type, cmd, cwd, reason, msg)"
    " and nextMessage, and nothing else."
)
REJECTED_EXCERPT_CHARS = 300


def build_runtime_context(shell_name: str, project_root: str) -> str:
    """Build startup orientation context for the model."""
    return "\n".join(
        [
            "Runtime environment context:",
            f"- operating_system: {platform.system()} {platform.release()}",
            f"- platform: {platform.platform()}",
            f"- architecture: {platform.machine()}",
            f"- os_name: {os.name}",
            f"- shell: {shell_name}",
            f"- project_root: {project_root}",
            "Use this context to choose command syntax valid for this shell and machine.",
        ]
    )


def build_system_prompt(
    *,
    shell_name: str,
    project_root: str,
    instructions: str | None = None,
    base_prompt: str | None = None,
) -> str:
    sections = [
        base_prompt or " ".join(BASE_SYSTEM_PROMPT_PARTS),
        ACTION_SCHEMA_TEXT,
        build_runtime_context(shell_name, project_root),
    ]
    if instructions and instructions.strip():
        sections.append(f"Project instructions from the user:\n{instructions.strip()}")
    return "\n\n".join(sections)


def build_correction_prompt(error: str, rejected: str | None = None) -> str:
    prompt = CORRECTION_PROMPT.format(error=error)
    if rejected and rejected.strip():
        excerpt = rejected.strip()
        if len(excerpt) > REJECTED_EXCERPT_CHARS:
            excerpt = f"{excerpt[:REJECTED_EXCERPT_CHARS]}..."
        prompt = f"{prompt}\nRejected reply:\n{excerpt}"
    return prompt
