# Utils package
from .ids import (
    now_ms,
    new_local_id,
    upload_key,
)

__all__ = [
    "now_ms",
    "new_local_id",
    "upload_key",
]
