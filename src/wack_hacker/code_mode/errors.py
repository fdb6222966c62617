from typing import Optional

from wack_hacker.code_mode.models import ValidationResult


class CodeModeError(Exception):
    """Base error for a Code Mode request. Terminal for the request."""

    user_message = "Something went wrong."

    def __init__(self, message: str = "", cause: Optional[BaseException] = None) -> None:
        super().__init__(message or self.user_message)
        self.cause = cause


class ClassificationFailure(CodeModeError):
    user_message = "Intent classification failed."


class GenerationFailure(CodeModeError):
    user_message = "Code generation failed."


class ValidationFailure(CodeModeError):
    """Generated code has syntax errors. Reported to the user; not fatal."""

    user_message = "Code generation failed validation."

    def __init__(self, result: ValidationResult) -> None:
        super().__init__(f"{len(result.errors)} syntax error(s)")
        self.result = result


class ThreadCreationFailure(CodeModeError):
    user_message = "Could not create a thread."


class ApprovalTransportFailure(CodeModeError):
    """Raised inside the approval race; resolved as a timeout."""

    user_message = "Approval listener failed."


class PresentationFailure(CodeModeError):
    user_message = "Could not update the status message."


class SummarizationFailure(CodeModeError):
    user_message = "Summarizing the result failed."


class SandboxFailure(CodeModeError):
    """Sandbox failures are converted into ``ExecutionResult`` values by the executor."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, cause=cause)


class SandboxStartupFailure(SandboxFailure):
    user_message = "The sandbox could not be started."


class SandboxRuntimeFailure(SandboxFailure):
    user_message = "The sandbox crashed."


class SandboxTimeout(SandboxFailure):
    user_message = "The sandbox timed out."
