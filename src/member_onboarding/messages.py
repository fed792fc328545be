"""
User-facing (Thai) messages for every error the onboarding flow can show.

Messages are selected by ErrorCode so adapters never need to know about
presentation. Log lines keep the technical ``FailureDescription.message``.
"""

from __future__ import annotations

from railway import ErrorCode

NO_PROFILE = "ไม่พบข้อมูลโปรไฟล์ กรุณาเข้าสู่ระบบใหม่"
REGISTRATION_FAILED = "การลงทะเบียนผู้ใช้ใหม่ล้มเหลว กรุณาลองใหม่"
MEMBER_NOT_FOUND = "ไม่พบข้อมูลสมาชิก"
NO_MEMBER_TO_UPDATE = "ไม่พบข้อมูลสมาชิกที่จะอัปเดต"
IDENTITY_INIT_FAILED = "เกิดข้อผิดพลาดในการเชื่อมต่อกับ LINE"
AUTHENTICATION_FAILED = "การยืนยันตัวตนล้มเหลว"
UNEXPECTED = "เกิดข้อผิดพลาดที่ไม่คาดคิด"

_BY_CODE: dict[ErrorCode, str] = {
    ErrorCode.NETWORK_ERROR: "เครือข่ายมีปัญหา กรุณาลองใหม่อีกครั้ง",
    ErrorCode.AUTHENTICATION_ERROR: "การยืนยันตัวตนล้มเหลว กรุณาเข้าสู่ระบบใหม่",
    ErrorCode.DATABASE_ERROR: "การเชื่อมต่อฐานข้อมูลมีปัญหา กรุณาลองใหม่",
    ErrorCode.CONFLICT_ERROR: "การลงทะเบียนล้มเหลว กรุณาติดต่อฝ่ายสนับสนุน",
    ErrorCode.VALIDATION_ERROR: "ข้อมูลไม่ถูกต้อง กรุณาตรวจสอบและลองใหม่",
    ErrorCode.TIMEOUT_ERROR: "การเชื่อมต่อหมดเวลา กรุณาลองใหม่",
    ErrorCode.UNKNOWN_ERROR: "เกิดข้อผิดพลาดที่ไม่คาดคิด กรุณาลองใหม่",
}


def message_for(code: ErrorCode) -> str:
    """Localized message for ``code``; unlisted codes get the generic one."""
    return _BY_CODE.get(code, _BY_CODE[ErrorCode.UNKNOWN_ERROR])
