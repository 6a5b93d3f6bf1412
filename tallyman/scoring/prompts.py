"""Prompt templates for the OpenAI quality scorer."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from tallyman.github.models import CommitDiff, ProjectContext

SYSTEM_PROMPT = """\
You are a principal engineer reviewing a merged change. Hold it to the \
highest standard and give a CODE QUALITY score from 1 to 10 backed by deep \
technical analysis.

## Grading

- 1-3: Poor. Basics are missing and the change needs rework.
- 4-5: Average. Most changes land here.
- 6: Good. Solid work.
- 7: Very good. Top 10% of changes.
- 8-10: Exceptional. Rare.

Start from 4-5 and justify anything higher with specific evidence.

## Analysis Requirements

1. Quote actual code from the diff.
2. Name specific file paths and functions.
3. Give technical reasoning for every judgement.
4. Be specific rather than generic.
5. Weigh the whole analysis when choosing the final score.

## Output Requirements

You must respond with valid JSON in the following structure:

```json
{
  "score": <number between 1 and 10>,
  "summary": "one sentence summary of the change",
  "analysis": "detailed technical analysis quoting the code"
}
```
"""


def _format_files(diff: CommitDiff) -> list[str]:
    return [f"- {f.filename} (+{f.additions}/-{f.deletions})" for f in diff.files]


def _format_patches(diff: CommitDiff) -> list[str]:
    patches = [f"// {f.filename}\n{f.patch}" for f in diff.files if f.patch]
    return ["", "## Diff", "```diff", "\n\n".join(patches), "```"]


def _format_context(context: ProjectContext | None) -> list[str]:
    if context is None:
        return []

    sections: list[str] = []
    if context.guidelines:
        sections.extend(
            [
                "",
                "## Project Guidelines (AGENTS.md)",
                "```markdown",
                context.guidelines,
                "```",
            ]
        )
    if context.rules:
        sections.extend(["", "## Project Rules", "\n\n".join(context.rules)])
    return sections


def build_user_prompt(diff: CommitDiff, context: ProjectContext | None = None) -> str:
    """Build the user prompt for one diff.

    Parameters
    ----------
    diff
        Commit diff including file patches and line statistics.
    context
        Optional project guidance appended after the diff.

    Returns
    -------
    str
        Markdown prompt describing the change.

    """
    lines = [
        "## Change Details",
        f"- SHA: {diff.sha}",
        f"- Author: {diff.author}",
        f"- Date: {diff.date}",
        f"- Message: {diff.message}",
        "",
        "## Stats",
        f"- Additions: {diff.stats.additions}",
        f"- Deletions: {diff.stats.deletions}",
        "",
        "## Files Changed",
        *_format_files(diff),
        *_format_patches(diff),
        *_format_context(context),
    ]
    return "\n".join(lines)
