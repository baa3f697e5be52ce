from datetime import date, time

from flask import request

from utils.errors import ValidationFailed


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailed(["Request body must be a JSON object"])
    return data


def positive_int(data: dict, key: str, errors: list):
    value = data.get(key)
    if value is None or value == "":
        errors.append(f"{key} is required")
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        errors.append(f"{key} must be a positive integer")
        return None
    try:
        value = int(value)
    except (TypeError, ValueError):
        errors.append(f"{key} must be a positive integer")
        return None
    if value <= 0:
        errors.append(f"{key} must be a positive integer")
        return None
    return value


def iso_date(data: dict, key: str, errors: list):
    raw = data.get(key)
    if not raw:
        errors.append(f"{key} is required")
        return None
    try:
        return date.fromisoformat(str(raw))
    except ValueError:
        errors.append(f"{key} must be an ISO date (YYYY-MM-DD)")
        return None


def time_of_day(data: dict, key: str, errors: list):
    raw = data.get(key)
    if not raw:
        errors.append(f"{key} is required")
        return None
    try:
        parsed = time.fromisoformat(str(raw))
    except ValueError:
        errors.append(f"{key} must be a time of day (HH:mm or HH:mm:ss)")
        return None
    # slot columns store wall-clock time at the center, an offset would be dropped
    if parsed.tzinfo is not None:
        errors.append(f"{key} must be a time of day without offset")
        return None
    return parsed


def optional_text(data: dict, key: str, errors: list):
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        errors.append(f"{key} must be a string")
        return None
    return value
