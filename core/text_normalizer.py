"""
text_normalizer.py
-------------------
Text normalization for fuzzy comparison of transaction descriptions.

Descriptions arrive in mixed scripts and widths ("ＮＥＴＦＬＩＸ．ＣＯＭ",
"Netflix 1490円", "ネットフリックス（月額）"). Catalog matching, identity
resolution and similarity all work on the output of normalize() and
tokenize(), so two spellings of the same merchant collapse to the same
string.

Both functions are pure.
"""

import re
import unicodedata


# Punctuation, whitespace, brackets, underscores and digits (after NFKC the
# full-width variants are already folded into these classes).
_STRIP_RE = re.compile(r"[\W_\d]+", re.UNICODE)

# Latin alphanumeric runs, or runs of hiragana / katakana (incl. the
# prolonged sound mark) / kanji. The katakana middle dot is punctuation.
_TOKEN_RE = re.compile(
    r"[0-9a-z]+"
    r"|[ぁ-ゖゝ-ゟァ-ヺー-ヿ々㐀-䶿一-鿿]+"
)


def _fold(text: str | None) -> str:
    if not text:
        return ""
    return unicodedata.normalize("NFKC", str(text)).lower()


def normalize(text: str | None) -> str:
    """
    Lowercase and strip whitespace, punctuation, brackets and digits.

    normalize("NETFLIX.COM 1490") == "netflixcom"
    normalize(normalize(x)) == normalize(x)
    """
    return _STRIP_RE.sub("", _fold(text))


def tokenize(text: str | None) -> list[str]:
    """
    Split into Latin-alphanumeric and CJK runs, case-folded.

    tokenize("Amazon Prime会費") == ["amazon", "prime", "会費"]
    """
    return _TOKEN_RE.findall(_fold(text))
