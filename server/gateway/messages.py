# User-facing message catalog. Keys are error categories plus a few
# request-specific reasons; unknown locales fall back to Thai.

from typing import Final

DEFAULT_LOCALE: Final = "th"

_CATALOG: Final[dict[str, dict[str, str]]] = {
    "th": {
        "invalid_input": "คำถามไม่ถูกต้อง กรุณาลองใหม่",
        "messages_required": "คำขอไม่ถูกต้อง: ต้องระบุรายการข้อความ (messages)",
        "prompt_required": "กรุณาระบุคำอธิบายภาพ (prompt)",
        "configuration": "การตั้งค่าเซิร์ฟเวอร์ไม่ถูกต้อง กรุณาติดต่อผู้ดูแลระบบ",
        "auth_failure": "ปัญหาการยืนยันตัวตน กรุณาติดต่อผู้ดูแลระบบ",
        "upstream_overloaded": "AI ใช้งานหนักเกินไป กรุณารอสักครู่แล้วลองใหม่",
        "upstream_error": "เกิดข้อผิดพลาดในการเชื่อมต่อ AI",
        "malformed_upstream_response": "ได้รับข้อมูลไม่ครบถ้วนจาก AI",
        "upstream_timeout": "AI ตอบกลับช้าเกินไป กรุณาลองใหม่อีกครั้ง",
        "internal_error": "เกิดข้อผิดพลาดภายในเซิร์ฟเวอร์",
        "rejected_by_quota": "ใช้งานเกินขีดจำกัด กรุณารอจนถึงเวลารีเซ็ตแล้วลองใหม่",
        "burst_limited": "ส่งคำขอถี่เกินไป กรุณารอสักครู่",
        "not_found": "API endpoint not found",
    },
    "en": {
        "invalid_input": "Invalid request. Please try again.",
        "messages_required": "Invalid request: messages array required",
        "prompt_required": "Prompt is required",
        "configuration": "Server configuration error. Please contact the administrator.",
        "auth_failure": "Authentication problem. Please contact the administrator.",
        "upstream_overloaded": "The AI service is busy. Please wait a moment and try again.",
        "upstream_error": "Failed to reach the AI service.",
        "malformed_upstream_response": "Received an incomplete response from the AI service.",
        "upstream_timeout": "The AI service took too long to respond. Please try again.",
        "internal_error": "Internal server error",
        "rejected_by_quota": "Usage limit exceeded. Please wait until the reset time.",
        "burst_limited": "Too many requests. Please slow down.",
        "not_found": "API endpoint not found",
    },
}


def user_message(key: str, locale: str = DEFAULT_LOCALE) -> str:
    """Localized message for a category or reason key."""
    catalog = _CATALOG.get(locale.lower(), _CATALOG[DEFAULT_LOCALE])
    return catalog.get(key) or catalog["internal_error"]
