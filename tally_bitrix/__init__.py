"""Form webhook → Bitrix24 bridge."""

from .submission import FORM_PROFILES, MissingIdentityError, SubmissionResult, run_submission

__all__ = ["FORM_PROFILES", "MissingIdentityError", "SubmissionResult", "run_submission"]
