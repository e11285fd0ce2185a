"""Masking for the public (unauthenticated) order tracking view."""


def mask_phone(phone: str) -> str:
    if not phone or len(phone) < 4:
        return "***"
    return f"{phone[:4]}***...{phone[-3:]}"


def mask_email(email: str) -> str:
    if not email or "@" not in email:
        return "***@***.com"
    username, _, domain = email.partition("@")
    if not username or not domain:
        return "***@***.com"
    if len(username) > 2:
        masked = f"{username[0]}***{username[-1]}"
    else:
        masked = f"{username[0]}***"
    return f"{masked}@{domain}"


def mask_address(address: str = "", city: str = "", state: str = "") -> str:
    # street and city never leave the server
    return f"*****, {state} State" if state else "*****"


def mask_full_name(full_name: str) -> str:
    if not full_name:
        return "***"
    parts = full_name.split(" ")
    if len(parts) == 1:
        return f"{parts[0][0]}***" if parts[0] else "***"
    last = parts[-1]
    return f"{parts[0]} {last[0] if last else ''}***"
