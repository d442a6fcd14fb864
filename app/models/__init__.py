from app.models.user import User, MfaMethod
from app.models.mfa_code import MfaCode
