import json


def match(payload):
    try:
        return json.loads(payload).get("state") == "open"
    except (ValueError, AttributeError):
        return False
