"""Language code normalisation (ISO 639-2/T, ISO 639-1 and English names)."""

from typing import Dict

# Language code normalization mapping (ISO 639-2/T + full names -> ISO 639-1).
LANGUAGE_CODES: Dict[str, str] = {
    "eng": "en", "en": "en", "english": "en",
    "spa": "es", "es": "es", "spanish": "es",
    "fre": "fr", "fra": "fr", "fr": "fr", "french": "fr",
    "ger": "de", "deu": "de", "de": "de", "german": "de",
    "ita": "it", "it": "it", "italian": "it",
    "por": "pt", "pt": "pt", "portuguese": "pt",
    "rus": "ru", "ru": "ru", "russian": "ru",
    "jpn": "ja", "ja": "ja", "japanese": "ja",
    "chi": "zh", "zho": "zh", "zh": "zh", "chinese": "zh",
    "kor": "ko", "ko": "ko", "korean": "ko",
    "ara": "ar", "ar": "ar", "arabic": "ar",
    "hin": "hi", "hi": "hi", "hindi": "hi",
    "dut": "nl", "nld": "nl", "nl": "nl", "dutch": "nl",
    "pol": "pl", "pl": "pl", "polish": "pl",
    "swe": "sv", "sv": "sv", "swedish": "sv",
    "nor": "no", "no": "no", "norwegian": "no",
    "dan": "da", "da": "da", "danish": "da",
    "fin": "fi", "fi": "fi", "finnish": "fi",
    "tur": "tr", "tr": "tr", "turkish": "tr",
    "gre": "el", "ell": "el", "el": "el", "greek": "el",
    "heb": "he", "he": "he", "hebrew": "he",
    "cze": "cs", "ces": "cs", "cs": "cs", "czech": "cs",
    "hun": "hu", "hu": "hu", "hungarian": "hu",
    "rum": "ro", "ron": "ro", "ro": "ro", "romanian": "ro",
    "tha": "th", "th": "th", "thai": "th",
    "vie": "vi", "vi": "vi", "vietnamese": "vi",
}

# ISO 639-1 -> Tesseract traineddata name.
TESSERACT_LANGUAGES: Dict[str, str] = {
    "en": "eng", "es": "spa", "fr": "fra", "de": "deu", "it": "ita",
    "pt": "por", "ru": "rus", "ja": "jpn", "zh": "chi_sim", "ko": "kor",
    "ar": "ara", "hi": "hin", "nl": "nld", "pl": "pol", "sv": "swe",
    "no": "nor", "da": "dan", "fi": "fin", "tr": "tur", "el": "ell",
    "he": "heb", "cs": "ces", "hu": "hun", "ro": "ron", "th": "tha",
    "vi": "vie",
}


def normalize_language(code: str) -> str:
    """Return the ISO 639-1 form of *code*, or *code* lower-cased if unknown."""
    if not code:
        return ""
    lowered = code.strip().lower()
    return LANGUAGE_CODES.get(lowered, lowered)


def same_language(a: str, b: str) -> bool:
    """Case-insensitive comparison that treats ``eng``/``en``/``English`` alike."""
    if not a or not b:
        return False
    return normalize_language(a) == normalize_language(b)


def tesseract_language(code: str) -> str:
    """Map a track or user language code to a Tesseract language name."""
    normalized = normalize_language(code)
    return TESSERACT_LANGUAGES.get(normalized, "eng")
