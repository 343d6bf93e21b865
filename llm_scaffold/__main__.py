"""Allow ``python -m llm_scaffold``."""

from llm_scaffold.pipeline import main

if __name__ == "__main__":
    main()
