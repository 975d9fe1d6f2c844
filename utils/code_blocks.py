"""
FILE/fenced-block parsing for chat replies.

The chat action answers in prose with code fixes formatted as:

    FILE: src/app.ts
    ```typescript
    ...complete file...
    ```

A fenced block right after a FILE: line is attributed to that path; any
other fenced block is kept with an empty file and never auto-applied.
"""

from __future__ import annotations

import re

from models.schemas import CodeBlock, CodeIssue

BLOCK_RE = re.compile(
    r"(?:^[ \t]*FILE:[ \t]*(?P<file>[^\n]+?)[ \t]*\n)?"
    r"```(?P<lang>[\w+#.-]*)[^\n]*\n(?P<code>.*?)```",
    re.MULTILINE | re.DOTALL,
)

DEFAULT_LANGUAGE = "typescript"


def parse_code_blocks(content: str) -> tuple[str, list[CodeBlock]]:
    """Split a reply into its prose and its code blocks."""
    blocks = []
    for m in BLOCK_RE.finditer(content):
        blocks.append(CodeBlock(
            file=(m.group("file") or "").strip(),
            language=m.group("lang") or DEFAULT_LANGUAGE,
            code=m.group("code").strip(),
        ))
    text = BLOCK_RE.sub("", content)
    text = re.sub(r"\n{3,}", "\n\n", text).strip()
    return text, blocks


def build_issue_fix_prompt(issue: CodeIssue) -> str:
    """Chat prompt asking for a complete fixed file for one issue."""
    at_line = f" at line {issue.line}" if issue.line else ""
    suggestion = f"Suggestion: {issue.suggestion}" if issue.suggestion else ""
    return (
        f'Fix this {issue.severity} {issue.type} issue in the file "{issue.file}"{at_line}.\n\n'
        f"Issue: {issue.description}\n"
        f"{suggestion}\n\n"
        "IMPORTANT: Return the COMPLETE fixed file content with the exact file path. Format as:\n"
        f"FILE: {issue.file}\n"
        "```typescript\n"
        "// complete fixed code here\n"
        "```"
    )
