# errors.py
"""
request-fatal errors.

everything here aborts a chat request before (or instead of) an answer and is
rendered by the http layer as {"error": kind, "response": message}.
tool-level failures never use these; they become failed envelopes instead.
"""


class AssistantError(Exception):
    kind = "server_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingCredentialsError(AssistantError):
    kind = "missing_credentials"
    status_code = 400


class InvalidUrlError(AssistantError):
    kind = "invalid_url"
    status_code = 400


class InvalidKeyError(AssistantError):
    kind = "invalid_key"
    status_code = 401


class ModelRateLimitError(AssistantError):
    kind = "rate_limit"
    status_code = 429


class ModelServiceError(AssistantError):
    kind = "server_error"
    status_code = 502
