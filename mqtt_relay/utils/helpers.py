"""
Helper functions for the MQTT relay
"""
from typing import Any, Dict, List, Optional, Tuple, Union


def decode_payload(payload: Union[bytes, bytearray, str]) -> str:
    """
    Decode payload của MQTT message thành text (thay thế byte không hợp lệ)
    """
    if isinstance(payload, str):
        return payload
    return bytes(payload).decode("utf-8", errors="replace")


def format_notification(topic: str, payload: Union[bytes, bytearray, str]) -> str:
    return f"[{topic}]: {decode_payload(payload)}"


def extract_text(message: Union[str, List[Dict[str, Any]], None]) -> str:
    """
    Lấy nội dung text từ message của OneBot event

    Args:
        message: Chuỗi, hoặc danh sách segment dạng {"type": "text", "data": {"text": ...}}
    """
    if isinstance(message, str):
        return message
    if isinstance(message, list):
        # Chỉ giữ lại segment text, bỏ qua ảnh, mention, ...
        parts = []
        for segment in message:
            if isinstance(segment, dict) and segment.get("type") == "text":
                parts.append((segment.get("data") or {}).get("text") or "")
        return "".join(parts).strip()
    return ""


def parse_private_message(event: Any) -> Optional[Tuple[str, str]]:
    """
    Lấy (user_id, text) từ event OneBot v11, chỉ nhận tin nhắn riêng (private)

    Returns:
        tuple: (user_id, text), None nếu event không phải tin nhắn riêng
    """
    if not isinstance(event, dict):
        return None
    if event.get("post_type") != "message" or event.get("message_type") != "private":
        return None
    if event.get("user_id") is None:
        return None
    return str(event["user_id"]), extract_text(event.get("message"))
