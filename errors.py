class ChatServiceError(Exception):
    """Base class for errors surfaced to API callers.

    `kind` is the machine-readable name returned in the response body,
    `status_code` the HTTP status it maps to.
    """

    kind = "ChatServiceError"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidParticipant(ChatServiceError):
    kind = "InvalidParticipant"


class SelfChat(ChatServiceError):
    kind = "SelfChat"


class EmptyContent(ChatServiceError):
    kind = "EmptyContent"


class ChatNotFound(ChatServiceError):
    kind = "ChatNotFound"
    status_code = 404


class MessageNotFound(ChatServiceError):
    kind = "MessageNotFound"
    status_code = 404


class NotAParticipant(ChatServiceError):
    kind = "NotAParticipant"
    status_code = 403


class Unauthenticated(ChatServiceError):
    kind = "Unauthenticated"
    status_code = 401


class IdentityProviderUnavailable(ChatServiceError):
    kind = "IdentityProviderUnavailable"
    status_code = 503
