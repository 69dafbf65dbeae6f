from academy.utils.hashing import generate_hash, idempotency_key
from academy.utils.validators import validate_card_number, validate_expiry, card_brand

__all__ = [
    "generate_hash", "idempotency_key",
    "validate_card_number", "validate_expiry", "card_brand",
]
