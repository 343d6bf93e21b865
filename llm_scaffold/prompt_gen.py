"""Query composition for the model endpoint.

Turns a ``ProjectRequest`` into an ``LlmQuery``. The system segment spells out
the output format the response parser understands, so this module and
``llm_scaffold.parser.response_parser`` together define the wire contract:

    FILE: relative/path/to/file.ext
    ```<language>
    <entire file content>
    ```

The wording of the instructions may change; the format itself must stay
backward compatible. ``PROTOCOL_VERSION`` is bumped whenever the format does.
"""

from __future__ import annotations

import textwrap

from .models import LlmQuery, ProjectRequest, QueryMessage, Role

PROTOCOL_VERSION = "1"

FILE_MARKER = "FILE:"

_SYSTEM_PROMPT = textwrap.dedent(f"""\
    You are a senior software engineer generating a complete, working starter
    project from an application description.

    Output format (protocol v{PROTOCOL_VERSION}). Follow it exactly:

    - Emit every file as a marker line followed immediately by ONE fenced
      code block holding the entire file content:

      {FILE_MARKER} relative/path/to/file.ext
      ```language
      file content
      ```

    - Paths are relative to the project root, use forward slashes, and never
      start with "/" or a drive letter, and never contain "..".
    - Each path appears exactly once. Never repeat or split a file.
    - If a file's content itself contains triple backticks, open and close its
      block with a longer fence (for example four backticks).
    - Emit the container setup (a Dockerfile and, only if the project has
      several services, one docker-compose.yml) at most once.
    - You may write short prose between files, but do not emit any fenced
      block that is not preceded by a {FILE_MARKER} line.
    - Do not escape control characters inside file content; write files
      exactly as they should appear on disk.
    """)

_DELIVERABLES = textwrap.dedent("""\
    Your solution must include:
    1. The source files of the application.
    2. A Dockerfile that builds and runs the application.
    3. A Makefile with the targets `build`, `run` and `test`, assuming the
       application is executed through the Dockerfile (make sure docker cleans
       up after itself).
    4. A README.md with the instructions required to build and run the
       application.
    """)


def _format_language(language: str | None) -> str:
    if language and language.strip():
        return language.strip()
    return "Choose the most suitable language for the requirements."


def compose(request: ProjectRequest) -> LlmQuery:
    """Build the prompt for *request*.

    Pure and deterministic: the same request always yields an equal query.
    """
    user_prompt = "\n".join([
        "Produce a working application from the following requirements.",
        "",
        "Project Name:",
        "---",
        request.effective_name,
        "---",
        "",
        "Programming Language:",
        "---",
        _format_language(request.language),
        "---",
        "",
        "Application Requirements:",
        "---",
        request.description.strip(),
        "---",
        "",
        _DELIVERABLES,
        f"Respond only with {FILE_MARKER} blocks as described in the instructions.",
    ])
    return LlmQuery(
        messages=(
            QueryMessage(role=Role.SYSTEM, content=_SYSTEM_PROMPT),
            QueryMessage(role=Role.USER, content=user_prompt),
        )
    )
