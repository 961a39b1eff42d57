import uuid

import shortuuid


def generate_row_id() -> str:
    return str(uuid.uuid4())


def generate_reference(prefix: str, length: int = 12) -> str:
    return f"{prefix}-{shortuuid.ShortUUID().random(length=length)}"
