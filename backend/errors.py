class VerificationError(Exception):
    """Base class for every failure scoped to a single verification attempt."""


class ConfigurationError(VerificationError):
    def __init__(self, provider, missing):
        self.provider = provider
        self.missing = list(missing)
        super().__init__(
            f"{provider} verification is not configured (missing: {', '.join(self.missing)})"
        )


class SessionNotFound(VerificationError):
    def __init__(self, session_id=None):
        self.session_id = session_id
        super().__init__("Verification session not found or expired")


class UpstreamError(VerificationError):
    def __init__(self, message, status_code=None):
        self.status_code = status_code
        super().__init__(message)


class UpstreamRateLimited(UpstreamError):
    def __init__(self, message, retry_after=None):
        self.retry_after = retry_after
        super().__init__(message, status_code=429)


class EligibilityFailure(VerificationError):
    def __init__(self, unmet):
        self.unmet = list(unmet)
        super().__init__("; ".join(self.unmet))


class SignatureMismatch(VerificationError):
    def __init__(self, message="Signature does not match the claimed address"):
        super().__init__(message)
