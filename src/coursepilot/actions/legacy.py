"""
Retired standalone-quiz actions.

Quizzes used to be their own record type with inline questions.  They are now assignments
drawing from a question bank, so these names only exist to point the model at the replacement.
They are hidden from the prompt and never materialize into a pending action.
"""

from typing import ClassVar

from coursepilot.actions import (
    ActionHandler,
    register_action,
)


class RetiredAction(ActionHandler):
    guidance: ClassVar[str] = ""

    def deprecation_message(self) -> str:
        replacement = self.descriptor.replacement
        text = f"The '{self.name}' action is no longer supported."
        if replacement:
            text += f" Use '{replacement}' instead."
        if self.guidance:
            text += f" {self.guidance}"
        return text


@register_action(
    "create_quiz",
    "Retired: quizzes are created from question banks.",
    deprecated=True,
    replacement="create_quiz_from_bank",
)
class CreateQuiz(RetiredAction):
    guidance = "Pick an existing question bank with list_question_banks, or create one first."


@register_action(
    "create_quiz_inline",
    "Retired: inline questions now live in a question bank.",
    deprecated=True,
    replacement="create_question_bank",
)
class CreateQuizInline(RetiredAction):
    guidance = (
        "Put the questions into a question bank, then build the quiz with create_quiz_from_bank "
        "(a pipeline can do both)."
    )


@register_action(
    "update_quiz",
    "Retired: quizzes are edited as assignments.",
    deprecated=True,
    replacement="update_assignment",
)
class UpdateQuiz(RetiredAction):
    guidance = "Quizzes are assignments now; look the quiz up with list_assignments."


@register_action(
    "delete_quiz",
    "Retired: quizzes are deleted as assignments.",
    deprecated=True,
    replacement="delete_assignment",
)
class DeleteQuiz(RetiredAction):
    guidance = "Quizzes are assignments now; look the quiz up with list_assignments."
