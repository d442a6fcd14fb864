from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.user import MfaMethod


class CamelModel(BaseModel):
    # el frontend habla camelCase
    model_config = ConfigDict(populate_by_name=True)


class RegisterIn(CamelModel):
    username: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=1)
    confirm_password: str = Field(..., alias="confirmPassword")

class RegisterOut(CamelModel):
    message: str
    user_id: str = Field(..., alias="userId")

class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

class UserOut(CamelModel):
    id: str
    username: str
    email: EmailStr
    mfa_enabled: bool = Field(False, alias="mfaEnabled")
    mfa_method: MfaMethod | None = Field(None, alias="mfaMethod")

class LoginOut(CamelModel):
    message: str
    token: str
    user: UserOut

class LoginMfaOut(CamelModel):
    message: str
    requires_mfa: bool = Field(True, alias="requiresMfa")
    temp_token: str = Field(..., alias="tempToken")
    mfa_method: MfaMethod = Field(..., alias="mfaMethod")

class MfaCodeIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=16)

class TokenOut(CamelModel):
    message: str
    token: str

class MessageOut(BaseModel):
    message: str

# --- 2FA ---
class MfaSetupOut(CamelModel):
    message: str
    secret: str
    qr_code: str = Field(..., alias="qrCode")
    otpauth_url: str = Field(..., alias="otpauthUrl")
