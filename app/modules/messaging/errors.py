class MessagingError(ValueError):
    code = "messaging_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)

class InvalidMessageRequest(MessagingError):
    code = "invalid_request"

class TemplateNotFound(MessagingError):
    code = "template_not_found"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Template not found or inactive: {key}")

class RecipientNotFound(MessagingError):
    code = "recipient_not_found"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Recipient not found: {user_id}")

class TemplateValidationError(MessagingError):
    code = "template_invalid"

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Invalid template: " + "; ".join(errors))

class VariableValidationError(MessagingError):
    code = "variables_invalid"

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Invalid variables: " + "; ".join(errors))

class RateLimitExceeded(MessagingError):
    code = "rate_limited"

    def __init__(self, channel: str, retry_after: float):
        self.channel = channel
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded for channel {channel}")

class RenderError(MessagingError):
    code = "render_failed"

class WebhookVerificationError(MessagingError):
    code = "webhook_unverified"

class InvalidTransition(MessagingError):
    code = "invalid_transition"

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move delivery from {current} to {target}")
