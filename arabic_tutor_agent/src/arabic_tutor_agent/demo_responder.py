"""
Demo Responder

Deterministic keyword replies for the unauthenticated demo page. No model
calls, so the page works without any credentials.
"""

EMPTY_REPLY = "مرحبًا! قل شيئًا بالعربية أو اكتب جملة لتجربة المحادثة."
GREETING_REPLY = "أهلًا! كيف يمكنني مساعدتك اليوم؟ هل تريد ممارسة محادثة بسيطة؟"
THANKS_REPLY = "على الرحب والسعة! هل تود تجربة جملة أخرى؟"
DIRECTIONS_REPLY = 'يمكنك أن تسأل: "أين أقرب مطعم؟" أو "كيف أصل إلى المركز؟"'

GREETING_KEYWORDS = ("مرحبا", "اهلا", "أهلا")
THANKS_KEYWORDS = ("شكرا",)
DIRECTIONS_KEYWORDS = ("اين", "أين", "مكان")


def demo_reply(transcript: str) -> str:
    transcript = transcript or ""
    text = transcript.strip().lower()
    if not text:
        return EMPTY_REPLY

    if any(word in text for word in GREETING_KEYWORDS):
        return GREETING_REPLY
    if any(word in text for word in THANKS_KEYWORDS):
        return THANKS_REPLY
    if any(word in text for word in DIRECTIONS_KEYWORDS):
        return DIRECTIONS_REPLY

    return f'سمعت: "{transcript}". جيد، جرّب أن ترد على سؤالي التالي: كيف تقول "أريد قهوة" بالعربية؟'
