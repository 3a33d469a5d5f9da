class SigningError(Exception):
    """Raised before anything is hashed when the signing input is unusable."""


class InvalidRequestError(SigningError, ValueError):
    pass


class MissingCredentialsError(SigningError, ValueError):
    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing credential fields: {', '.join(missing)}")


class S3Error(Exception):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code

    def __str__(self) -> str:
        if self.status_code and self.error_code:
            return f"{self.error_code} ({self.status_code}): {self.message}"
        elif self.status_code:
            return f"HTTP {self.status_code}: {self.message}"
        return self.message


class S3ClientError(S3Error):
    pass


class S3ServerError(S3Error):
    pass


class S3NotFoundError(S3ClientError):
    def __init__(self, message: str = "The specified resource was not found"):
        super().__init__(message, status_code=404, error_code="NoSuchKey")


class S3AccessDeniedError(S3ClientError):
    def __init__(
        self,
        message: str = "Access denied",
        error_code: str = "AccessDenied",
    ):
        super().__init__(message, status_code=403, error_code=error_code)


# The three rejections below mean the signer or its inputs are wrong, not the
# object store: bad secret or canonicalization, a drifting clock, or a
# presigned URL used after X-Amz-Date + X-Amz-Expires.
class S3SignatureMismatchError(S3AccessDeniedError):
    def __init__(self, message: str = "Signature does not match"):
        super().__init__(message, error_code="SignatureDoesNotMatch")


class S3ClockSkewError(S3AccessDeniedError):
    def __init__(self, message: str = "Request time too skewed"):
        super().__init__(message, error_code="RequestTimeTooSkewed")


class S3ExpiredError(S3AccessDeniedError):
    def __init__(self, message: str = "Request has expired"):
        super().__init__(message, error_code="AccessDenied")
