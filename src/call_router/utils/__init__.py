from .helpers import mask_phone_number, normalize_phone_number

__all__ = ["mask_phone_number", "normalize_phone_number"]
