from typing import Optional

from pydantic import BaseModel, Field


class ValidateRequest(BaseModel):
    # QR payload (credential hash) or the readable code typed by the operator
    code: Optional[str] = Field(default=None, max_length=120)
    qrCode: Optional[str] = Field(default=None, max_length=120)

    def value(self) -> str:
        return (self.code or self.qrCode or "").strip()
