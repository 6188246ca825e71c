"""
Built-in prompt patterns for static analysis.
"""

import re
from typing import List

from promptlab.optimization.schemas import PatternExample, PromptPattern


def default_patterns() -> List[PromptPattern]:
    """Patterns registered on every new optimization engine."""
    return [
        PromptPattern(
            name="vague-instructions",
            description="Instructions that are too general or ambiguous",
            pattern=re.compile(r"please|try to|maybe|somehow|kind of", re.IGNORECASE),
            issues=["reduces output quality", "increases variability"],
            improvements=["Use specific, actionable instructions"],
            examples=[
                PatternExample(
                    bad="Please try to summarize this somehow",
                    good="Summarize this text in 3 bullet points, focusing on key findings",
                )
            ],
        ),
        PromptPattern(
            name="missing-context",
            description="Prompts that lack necessary context",
            pattern=re.compile(r"^(Answer|Respond|Generate|Create|Write)", re.IGNORECASE),
            issues=["may produce irrelevant outputs", "requires more clarification"],
            improvements=["Provide relevant context and constraints"],
            examples=[
                PatternExample(
                    bad="Answer the question",
                    good=(
                        "As a technical expert, answer the following question "
                        "about cloud architecture"
                    ),
                )
            ],
        ),
        PromptPattern(
            name="negative-instructions",
            description="Instructions focusing on what not to do",
            pattern=re.compile(r"don't|do not|avoid|never|shouldn't", re.IGNORECASE),
            issues=["less effective than positive instructions", "may be ignored"],
            improvements=["Rephrase as positive instructions"],
            examples=[
                PatternExample(
                    bad="Don't use technical jargon",
                    good="Use simple, everyday language accessible to beginners",
                )
            ],
        ),
    ]
