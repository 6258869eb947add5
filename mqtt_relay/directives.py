"""
Parser for "#mqtt <command> [args...]" messages
"""
from typing import Optional

import config
from type import Command, Directive

USAGE = {
    Command.CONNECT: "connect <broker_url> [username] [password]",
    Command.DISCONNECT: "disconnect",
    Command.PUBLISH: "publish <topic> <message>",
    Command.SUBSCRIBE: "subscribe <topic>",
    Command.UNSUBSCRIBE: "unsubscribe <topic>",
    Command.STATUS: "status",
    Command.LIST: "list",
    Command.CLEAR: "clear",
    Command.HELP: "help",
}


def parse_directive(text: str, prefix: Optional[str] = None) -> Optional[Directive]:
    """
    Parse một tin nhắn thành Directive

    Args:
        text (str): Nội dung tin nhắn
        prefix (str): Tiền tố lệnh, mặc định lấy từ config

    Returns:
        Directive hoặc None nếu tin nhắn không phải lệnh của relay
    """
    prefix = prefix or config.RELAY_COMMAND_PREFIX
    tokens = text.split()
    if not tokens or tokens[0] != prefix:
        return None

    if len(tokens) == 1:
        return Directive(command=Command.UNKNOWN, name="")

    name, args = tokens[1], tokens[2:]
    try:
        command = Command(name)
    except ValueError:
        command = Command.UNKNOWN
    return Directive(command=command, name=name, args=args)


def usage(command: Command, prefix: Optional[str] = None) -> str:
    prefix = prefix or config.RELAY_COMMAND_PREFIX
    return f"{prefix} {USAGE[command]}"
