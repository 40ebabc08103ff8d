"""
Vietnamese collation helpers.

Sort keys follow the Vietnamese alphabet (a ă â b c d đ e ê ...) at the
primary level, tone marks at the secondary level and letter case last, so
"Đỗ" sorts after every "D..." name and "Ánh" sorts right after "Anh".
"""
import unicodedata
from typing import Tuple

ALPHABET = "aăâbcdđeêfghijklmnoôơpqrstuưvwxyz"

# Combining marks that change the base letter (they are part of the alphabet)
_LETTER_MODIFIERS = {"\u0306", "\u0302", "\u031b"}  # breve, circumflex, horn

# Tone order: ngang, huyền, hỏi, ngã, sắc, nặng
_TONES = {"\u0300": 1, "\u0309": 2, "\u0303": 3, "\u0301": 4, "\u0323": 5}

_LETTER_RANK = {ch: i for i, ch in enumerate(ALPHABET)}


def normalize_text(value: str) -> str:
    """
    Lowercase and strip every diacritic, for accent-insensitive search.
    "Đào tạo" -> "dao tao".
    """
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", value.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.replace("đ", "d")


def _split_letters(value: str):
    """Yield (base letter with alphabet modifiers, tone rank, is_upper) per character."""
    decomposed = unicodedata.normalize("NFD", value)
    current = None
    tone = 0
    upper = False
    for ch in decomposed:
        if unicodedata.combining(ch):
            if current is None:
                continue
            if ch in _LETTER_MODIFIERS:
                current = unicodedata.normalize("NFC", current + ch)
            else:
                tone = _TONES.get(ch, tone)
            continue
        if current is not None:
            yield current, tone, upper
        upper = ch.isupper()
        current = ch.lower()
        tone = 0
    if current is not None:
        yield current, tone, upper


def vi_sort_key(value) -> Tuple[tuple, tuple, tuple]:
    """Locale-aware sort key for Vietnamese display names."""
    text = "" if value is None else str(value)
    primary, secondary, tertiary = [], [], []
    for letter, tone, upper in _split_letters(text):
        rank = _LETTER_RANK.get(letter)
        if rank is None:
            # Spaces, digits and punctuation sort before letters
            primary.append((0, ord(letter)))
        else:
            primary.append((1, rank))
        secondary.append(tone)
        tertiary.append(1 if upper else 0)
    return tuple(primary), tuple(secondary), tuple(tertiary)
