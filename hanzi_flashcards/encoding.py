"""
Upload decoding: repair mojibake filenames and pick UTF-8 or GBK for file content.

Files come from a mix of editors and OS defaults, so the encoding is inferred:
UTF-8 (BOM stripped) first, GBK when UTF-8 yields no usable characters.
"""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import EncodingError

logger = logging.getLogger(__name__)

# CJK Unified Ideographs, basic block as used by the importer.
CJK_RE = re.compile("[\u4e00-\u9fa5]")
# Latin-1 characters that show up when UTF-8 bytes were decoded as Latin-1.
MOJIBAKE_RE = re.compile(r"[âÃÄÅÆÇÈÉÊËÌÍÎÏÐÑÒÓÔÕÖØÙÚÛÜÝÞßàáâãäåæçèéêëìíîïðñòóôõöøùúûüýþÿ]")

BOM = "\ufeff"
REPLACEMENT = "\ufffd"
UNDECODABLE_MESSAGE = '文件编码无法识别，请确保为 UTF-8 或 GBK 编码。'


@dataclass(frozen=True)
class DecodedUpload:
    text: str
    filename: str
    encoding: str


def is_cjk_character(ch: str) -> bool:
    return isinstance(ch, str) and len(ch) == 1 and CJK_RE.match(ch) is not None


def extract_characters(text: str) -> List[str]:
    """Unique CJK characters of text, in order of first occurrence."""
    if not text:
        return []
    return list(dict.fromkeys(ch for ch in text if is_cjk_character(ch)))


def fix_filename_encoding(filename: str) -> str:
    """
    Undo Latin-1 mojibake in an uploaded filename (e.g. 'å¸¸ç¨å­.txt').

    The repair is accepted only if it produces at least one Chinese character.
    """
    if not filename or not MOJIBAKE_RE.search(filename):
        return filename
    try:
        repaired = filename.encode('latin-1').decode('utf-8')
    except UnicodeError:
        return filename
    if CJK_RE.search(repaired):
        logger.info("Repaired filename %r -> %r", filename, repaired)
        return repaired
    return filename


def decode_upload(raw: bytes, filename: str) -> Tuple[Optional[DecodedUpload], Optional[EncodingError]]:
    """
    Decode uploaded bytes. Returns (decoded, error); exactly one is None.

    Both decodings replace invalid sequences, so a stray or truncated byte
    does not sink an otherwise readable file. The upload is undecodable only
    when GBK also yields no characters and had to replace some bytes;
    plain ASCII decodes fine and is left to the caller to reject.
    """
    corrected = fix_filename_encoding(filename or "")

    text = raw.decode('utf-8', errors='replace')
    if text.startswith(BOM):
        text = text[len(BOM):]
    if extract_characters(text):
        return DecodedUpload(text=text, filename=corrected, encoding='utf-8'), None

    logger.info("No CJK characters under UTF-8 for %r, trying GBK", corrected)
    text = raw.decode('gbk', errors='replace')
    if REPLACEMENT in text and not extract_characters(text):
        return None, EncodingError(UNDECODABLE_MESSAGE, detail=f"{len(raw)} bytes, no characters under UTF-8 or GBK")
    return DecodedUpload(text=text, filename=corrected, encoding='gbk'), None
