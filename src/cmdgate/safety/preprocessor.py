"""Input preprocessor for bounding input and detecting obfuscation.

Runs before tokenization:
- Decode bytes, strip NUL/control and zero-width characters
- Bound the input length
- Normalize homoglyphs to their ASCII look-alikes
- Detect encodings and recover their payloads so the classifier can
  tokenize them as ordinary commands

Each detection adds a weight to the obfuscation score; at BLOCK_THRESHOLD
the input is considered deliberately disguised.
"""

import base64
import binascii
import re
from dataclasses import dataclass, field
from typing import NamedTuple
from urllib.parse import unquote

# Inputs beyond this are cut; the remainder is never analyzed
MAX_COMMAND_LENGTH = 8192


@dataclass
class PreprocessResult:
    """Result of preprocessing a command.

    Attributes:
        original_command: The decoded (but otherwise untouched) input.
        normalized_command: Command after cleanup and homoglyph mapping.
        encodings_detected: Encoding names, in detection order.
        obfuscation_score: 0.0 for plain input, capped at 1.0.
        block_reason: Set when the score reaches the block threshold.
        decoded_payloads: Plain-text payloads recovered from encodings.
        warnings: One human-readable line per detection.
        truncated: Whether the input was cut at MAX_COMMAND_LENGTH.
    """

    original_command: str
    normalized_command: str
    encodings_detected: list[str] = field(default_factory=list)
    obfuscation_score: float = 0.0
    block_reason: str | None = None
    decoded_payloads: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    truncated: bool = False

    @property
    def is_blocked(self) -> bool:
        return self.block_reason is not None

    @property
    def has_encoding(self) -> bool:
        return bool(self.encodings_detected)

    def flag(self, encoding: str, warning: str) -> None:
        self.encodings_detected.append(encoding)
        self.warnings.append(warning)

    def add_payload(self, decoded: str | None) -> bool:
        if decoded and decoded.strip():
            self.decoded_payloads.append(decoded)
            return True
        return False


class Marker(NamedTuple):
    """A pattern whose mere presence signals obfuscation."""

    encoding: str
    pattern: re.Pattern[str]
    weight: float
    warning: str


B64_FLAG = r"(?:-d|--decode|-D)"

MARKERS: tuple[Marker, ...] = (
    Marker("base64", re.compile(rf"base64\s+{B64_FLAG}", re.IGNORECASE), 0.3,
           "base64 decoding in the command"),
    Marker("xxd", re.compile(r"xxd\s+(?:-\w*r\w*|--reverse)", re.IGNORECASE), 0.3,
           "xxd reverse (hex decode)"),
    Marker("printf_hex", re.compile(r"printf\s+['\"]\\x"), 0.25,
           "printf of hex escapes"),
    Marker("printf_octal", re.compile(r"printf\s+['\"]\\[0-7]{3}"), 0.25,
           "printf of octal escapes"),
    Marker("unicode_escape", re.compile(r"\$'\\u[0-9a-fA-F]{4}"), 0.3,
           "$'\\uXXXX' escapes"),
    Marker("unicode_long_escape", re.compile(r"\$'\\U[0-9a-fA-F]{8}"), 0.35,
           "$'\\UXXXXXXXX' escapes"),
    Marker("var_indirect", re.compile(r"\$\{![^}]+\}"), 0.2,
           "indirect variable reference"),
    # r='rm'; m='-rf'; $r $m /
    Marker("var_concat", re.compile(r"(\w+)=['\"][^'\"]+['\"].*\$\{?\1\b"), 0.3,
           "command assembled from variables"),
)

# echo <b64> | base64 -d, and base64 -d <<< <b64>
B64_PIPED = re.compile(
    rf"(?:echo|printf)\s+(?:-n\s+)?['\"]?([A-Za-z0-9+/=]{{8,}})['\"]?\s*\|\s*base64\s+{B64_FLAG}",
    re.IGNORECASE,
)
B64_HERESTRING = re.compile(rf"base64\s+{B64_FLAG}\s*<<<\s*['\"]?([A-Za-z0-9+/=]{{8,}})['\"]?", re.IGNORECASE)
B64_BLOB = re.compile(r"[A-Za-z0-9+/]{40,}={0,2}")

HEX_RUN = re.compile(r"(?:\\x[0-9a-fA-F]{2})+")
OCTAL_RUN = re.compile(r"\$'((?:\\[0-7]{3})+)'")
PERCENT_ESCAPE = re.compile(r"%[0-9a-fA-F]{2}")
VAR_SUBSTRING = re.compile(r"\$\{[^}]+:[0-9]+:[0-9]+\}")

# C0 controls except tab and newline, plus DEL
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
INVISIBLE_CHARS = re.compile("[\u200b\u200c\u200d\u2060\ufeff]")

# Look like ASCII, aren't
HOMOGLYPHS = {
    "\u0430": "a",  # Cyrillic a
    "\u0435": "e",  # Cyrillic ie
    "\u043e": "o",  # Cyrillic o
    "\u0440": "p",  # Cyrillic er
    "\u0441": "c",  # Cyrillic es
    "\u0443": "y",  # Cyrillic u
    "\u0445": "x",  # Cyrillic ha
    "\u0456": "i",  # Cyrillic i
    "\u0458": "j",  # Cyrillic je
    "\u0455": "s",  # Cyrillic dze
    "\u04bb": "h",  # Cyrillic shha
    "\u0501": "d",  # Cyrillic komi de
    "\u051b": "q",  # Cyrillic qa
    "\u03bf": "o",  # Greek omicron
    "\uff52": "r",  # Fullwidth r
    "\uff4d": "m",  # Fullwidth m
    "\uff0f": "/",  # Fullwidth solidus
    "\u2215": "/",  # Division slash
    "\u2212": "-",  # Minus sign
    "\u2010": "-",  # Hyphen
    "\u2013": "-",  # En dash
    "\u2014": "-",  # Em dash
    "\u00a0": " ",  # No-break space
}
HOMOGLYPH_TABLE = str.maketrans(HOMOGLYPHS)

# Characters that make decoded base64 look like a command rather than data
COMMAND_CHARS = ("/", "|", "&", ";", " -")


def _b64decode(encoded: str) -> str | None:
    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        raw = base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        return None
    return raw.decode("utf-8", errors="replace")


def _hex_decode(run: str) -> str:
    return bytes.fromhex(run.replace("\\x", "")).decode("utf-8", errors="replace")


def _octal_decode(run: str) -> str:
    return bytes(int(code, 8) & 0xFF for code in run.split("\\") if code).decode("utf-8", errors="replace")


class InputPreprocessor:
    """Detects and decodes obfuscation in shell commands."""

    BLOCK_THRESHOLD = 0.7

    def process(self, command: str | bytes) -> PreprocessResult:
        """Bound, clean and scan a command.

        Args:
            command: The shell command to analyze. Bytes are decoded as
                UTF-8 with replacement characters.
        """
        if isinstance(command, bytes):
            command = command.decode("utf-8", errors="replace")
        result = PreprocessResult(original_command=command, normalized_command=command)

        text = command
        if len(text) > MAX_COMMAND_LENGTH:
            text = text[:MAX_COMMAND_LENGTH]
            result.truncated = True
            result.warnings.append(f"Input truncated from {len(command)} to {MAX_COMMAND_LENGTH} characters")

        score, text = self._strip_hidden(text, result)
        for marker in MARKERS:
            if marker.pattern.search(text):
                result.flag(marker.encoding, marker.warning)
                score += marker.weight
        score += self._decode_base64(text, result)
        score += self._decode_escapes(text, result)
        score += self._decode_url(text, result)
        score += self._scan_lookalikes(text, result)

        result.normalized_command = text.translate(HOMOGLYPH_TABLE)
        result.obfuscation_score = min(score, 1.0)
        if result.obfuscation_score >= self.BLOCK_THRESHOLD:
            result.block_reason = (
                f"High obfuscation score ({result.obfuscation_score:.2f}): "
                f"detected {', '.join(result.encodings_detected)}"
            )
        return result

    @staticmethod
    def _strip_hidden(text: str, result: PreprocessResult) -> tuple[float, str]:
        score = 0.0
        controls = len(CONTROL_CHARS.findall(text))
        if controls:
            result.flag("control_characters", f"Removed {controls} control character(s)")
            text = CONTROL_CHARS.sub("", text)
            score += 0.2
        if INVISIBLE_CHARS.search(text):
            result.flag("invisible_characters", "Removed zero-width characters")
            text = INVISIBLE_CHARS.sub("", text)
            score += 0.3
        return score, text

    @staticmethod
    def _decode_base64(text: str, result: PreprocessResult) -> float:
        score = 0.0
        for pattern in (B64_PIPED, B64_HERESTRING):
            for match in pattern.finditer(text):
                if result.add_payload(_b64decode(match.group(1))):
                    score += 0.2

        for blob in B64_BLOB.findall(text):
            decoded = _b64decode(blob)
            if decoded and any(c in decoded for c in COMMAND_CHARS):
                result.flag("base64_string", f"Base64 blob decoding to a command: {blob[:20]}...")
                result.add_payload(decoded)
                score += 0.3
        return score

    @staticmethod
    def _decode_escapes(text: str, result: PreprocessResult) -> float:
        """\\xNN runs (three or more escapes) and $'\\NNN' octal strings."""
        score = 0.0

        hex_runs = HEX_RUN.findall(text)
        escapes = sum(run.count("\\x") for run in hex_runs)
        if escapes >= 3:
            result.flag("hex", f"{escapes} hex escapes")
            score += 0.2 + min(escapes, 10) * 0.03
            for run in hex_runs:
                result.add_payload(_hex_decode(run))

        octal_runs = OCTAL_RUN.findall(text)
        if octal_runs:
            result.flag("octal", f"{len(octal_runs)} octal escape strings")
            score += 0.2 + min(len(octal_runs), 10) * 0.03
            for run in octal_runs:
                result.add_payload(_octal_decode(run))
        return score

    @staticmethod
    def _decode_url(text: str, result: PreprocessResult) -> float:
        escapes = len(PERCENT_ESCAPE.findall(text))
        if escapes < 3:
            return 0.0
        result.flag("url", f"{escapes} percent escapes")
        decoded = unquote(text)
        if decoded != text:
            result.add_payload(decoded)
        return 0.15 + min(escapes, 10) * 0.02

    @staticmethod
    def _scan_lookalikes(text: str, result: PreprocessResult) -> float:
        """Substring slicing of variables and homoglyph characters."""
        score = 0.0
        if len(VAR_SUBSTRING.findall(text)) >= 2:
            result.flag("var_substring", "variables sliced into characters")
            score += 0.3

        found = [f"{char}->{plain}" for char, plain in HOMOGLYPHS.items() if char in text]
        if found:
            result.flag("homoglyphs", f"Homoglyph characters: {', '.join(found[:5])}")
            score += 0.4 + min(len(found), 5) * 0.05
        return score
