import dataclasses

from .exceptions import MissingCredentialsError


@dataclasses.dataclass(frozen=True)
class Credentials:
    access_key_id: str
    secret_access_key: str = dataclasses.field(repr=False)
    region: str = "us-east-1"
    service: str = "s3"

    def validate(self) -> None:
        missing = [
            field.name
            for field in dataclasses.fields(self)
            if not (getattr(self, field.name) or "").strip()
        ]
        if missing:
            raise MissingCredentialsError(missing)
