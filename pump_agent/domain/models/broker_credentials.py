from pydantic import BaseModel, field_validator


class BrokerCredentials(BaseModel):
    host: str
    port: int = 8883
    username: str = ""
    password: str = ""
    use_tls: bool = True

    @field_validator("host")
    @classmethod
    def validate_host(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("host must not be empty")
        return normalized

    @field_validator("port")
    @classmethod
    def validate_port(cls, value: int) -> int:
        if not 1 <= value <= 65535:
            raise ValueError("port must be within 1-65535")
        return value
