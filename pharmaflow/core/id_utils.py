import shortuuid


def generate_short_token(length: int = 12) -> str:
    return shortuuid.ShortUUID().random(length=length)


def generate_sku() -> str:
    return f"SKU-{generate_short_token(10).upper()}"


def generate_batch_number() -> str:
    return f"BT-{generate_short_token(8).upper()}"


def generate_invoice_number() -> str:
    return f"INV-{generate_short_token(10).upper()}"
