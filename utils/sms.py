from flask import current_app
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

# Twilio rejects bodies above 1600 chars
MAX_SMS_LENGTH = 1600


def send_sms(to_number: str, body: str):
    account_sid = current_app.config.get("TWILIO_ACCOUNT_SID")
    auth_token = current_app.config.get("TWILIO_AUTH_TOKEN")
    from_number = current_app.config.get("TWILIO_FROM_NUMBER")

    if not (account_sid and auth_token and from_number):
        return False, "SMS not configured"
    if not to_number:
        return False, "No recipient"

    try:
        client = Client(account_sid, auth_token)
        message = client.messages.create(to=to_number, from_=from_number, body=body[:MAX_SMS_LENGTH])
        return True, message.sid
    except TwilioRestException as exc:
        return False, f"Twilio error {exc.code}: {exc.msg}"
