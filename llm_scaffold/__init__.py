"""llm-scaffold -- turns a project description into a project skeleton.

The description is sent to an OpenAI-compatible model, the answer is parsed
into ``FILE:`` blocks, validated, completed with a baseline Dockerfile when
the model did not provide one, and written under a target directory.
"""

__version__ = "0.1.0"
