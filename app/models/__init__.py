# Database models
from app.models.user import User
from app.models.number_rate import NumberRateDeck, NumberRate, RateDeckAssignment
from app.models.phone_number import PhoneNumber
from app.models.phone_number_assignment import PhoneNumberAssignment
from app.models.phone_number_billing import PhoneNumberBilling
from app.models.email_log import EmailLog

__all__ = [
    "User",
    "NumberRateDeck",
    "NumberRate",
    "RateDeckAssignment",
    "PhoneNumber",
    "PhoneNumberAssignment",
    "PhoneNumberBilling",
    "EmailLog",
]
