from telegram import InlineKeyboardButton


def parse_tags(raw: str) -> list[str]:
    """'verbs, #irregular  b1' -> ['verbs', 'irregular', 'b1'] (deduplicated, order kept)"""
    tags: list[str] = []
    for part in raw.replace(',', ' ').replace('|', ' ').split():
        tag = part.lstrip('#').strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def parse_text(content: str) -> dict[str, str | list[str]]:
    """
    returns: {'front': str, 'back': str, 'tags': list[str]}

    Accepts 'front | back', 'front | back | tag, tag' or two-plus lines
    (first line is the front, the rest is the back).
    """
    text = content.strip()

    if '|' in text:
        parts = text.split('|', 2)
        tags = parse_tags(parts[2]) if len(parts) > 2 else []
        return {'front': parts[0].strip(), 'back': parts[1].strip(), 'tags': tags}

    if '\n' in text:
        lines = [l.strip() for l in text.split('\n') if l.strip()]
        if len(lines) >= 2:
            return {'front': lines[0], 'back': '\n'.join(lines[1:]), 'tags': []}

    return {'front': text, 'back': '', 'tags': []}


def truncate(text: str, max_len: int) -> str:
    return text if len(text) <= max_len else text[:max_len - 1] + '…'


def format_duration(ms: int | float) -> str:
    """1h 5m / 12m / 40s"""
    seconds = int(ms // 1000)
    hours, rest = divmod(seconds, 3600)
    minutes = rest // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m"
    return f"{seconds}s"


def get_buttons(items: list[dict[str, str]], prefix: str) -> list[list[InlineKeyboardButton]]:
    buttons: list[list[InlineKeyboardButton]] = []
    for item in items:
        buttons.append([
            InlineKeyboardButton(
                item['name'],
                callback_data=f"{prefix}_{item['id']}"
            )
        ])
    return buttons
