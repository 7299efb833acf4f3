"""Prompt builders for the gateway's task entry points.

The calling application may pass its own prompt text instead.
"""

from academic_gateway.exam import ExamQuestion

ANALYZE_PROMPT = """
Analyze these exam papers. Extract questions/marks structure.
OUTPUT: JSON only.

RULES:
- suggestedAnswer: extremely brief key points only.
- diagramRequired: true ONLY if visual answer needed.

Schema:
{
  examTitle: string,
  totalMarks: number,
  questions: [{ id, label, text, marks, suggestedAnswer, diagramRequired, diagramDescription }]
}
"""

REFINE_SYSTEM_PROMPT = "You are a precise academic answer generator."

TITLE_SYSTEM_PROMPT = (
    "Generate a short, concise title (max 4-6 words) for this chat. "
    "OUTPUT: Title text only. NO quotes."
)

DEFAULT_TITLE = "New Chat"


def build_refine_prompt(question: ExamQuestion) -> str:
    return (
        f"Write a perfect model answer for this {question.marks}-mark question.\n"
        "Use <b> and <u> HTML tags for emphasis, wrap math in [[MATH]]...[[/MATH]] "
        "and code in [[CODE]]...[[/CODE]]. Be concise and academic.\n\n"
        f"Question: {question.text}\n"
        f"Context: {question.suggested_answer}\n"
    )


def build_diagram_prompt(description: str) -> str:
    return (
        f"Technical diagram for exam: {description}.\n"
        "Style: Clean hand-drawn look, blue/black ink, white paper. High contrast."
    )


def build_title_prompt(first_user_message: str) -> str:
    return f'First user message: "{first_user_message[:100]}"'
