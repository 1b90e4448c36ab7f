from enum import Enum


class PaymentMode(str, Enum):
    CLAIM = "CLAIM"
    PAY = "PAY"
    GIFT_CARD = "GIFT_CARD"
    ALLOCATION = "ALLOCATION"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class GiftCodeStatus(str, Enum):
    UNUSED = "UNUSED"
    USED = "USED"
    DEACTIVATED = "DEACTIVATED"


class UserRole(str, Enum):
    USER = "USER"
    MERCHANT = "MERCHANT"
    PARTNER = "PARTNER"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    ACCUMULATION = "ACCUMULATION"
    CERTIFIED = "CERTIFIED"


class LandingCase(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"
    F = "F"
    ADMIN = "ADMIN"


class FormType(str, Enum):
    MINIMAL = "minimal"
    STANDARD = "standard"
    FULL = "full"
