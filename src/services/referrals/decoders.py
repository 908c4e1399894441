"""
Referral Document Decoders.

Blocking byte-to-text decoders for every uploadable format. The text
extraction service runs them in a worker thread.

Formats:
- PDF: PyMuPDF page text
- DOCX: python-docx paragraphs and table cells
- RTF: control-word stripping
- Images: Pillow validation and JPEG normalisation (HEIC/HEIF via pillow-heif)
"""

import re
import zipfile
from dataclasses import dataclass, field
from io import BytesIO
from typing import Optional

import fitz  # PyMuPDF
import pillow_heif
from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from PIL import Image, ImageOps, UnidentifiedImageError

from src.utils.logging import get_logger

logger = get_logger(__name__)

pillow_heif.register_heif_opener()

DOCX_SIGNATURE = b"PK\x03\x04"


class DecodeError(Exception):
    """Raised when a document's bytes cannot be turned into text."""


@dataclass
class PdfText:
    text: str
    page_count: int


@dataclass
class ImageCheck:
    valid: bool
    width: int = 0
    height: int = 0
    format: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DocxText:
    text: str
    warnings: list[str] = field(default_factory=list)


# =============================================================================
# PDF / plain text
# =============================================================================


def decode_pdf(data: bytes) -> PdfText:
    """Concatenate the text layer of every page."""
    try:
        pdf_document = fitz.open(stream=data, filetype="pdf")
    except (fitz.FileDataError, RuntimeError, ValueError) as e:
        raise DecodeError(f"Failed to open PDF: {e}") from e

    try:
        pages = [page.get_text() for page in pdf_document]
        return PdfText(text="\n\n".join(p.strip() for p in pages if p.strip()), page_count=len(pages))
    finally:
        pdf_document.close()


def decode_plain_text(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


# =============================================================================
# DOCX
# =============================================================================


def is_valid_docx(data: bytes) -> bool:
    """A .docx file is a ZIP archive."""
    return data[:4] == DOCX_SIGNATURE


def decode_docx(data: bytes) -> DocxText:
    """
    Extract paragraph text, then table cell text, from a Word document.

    Raises:
        DecodeError: If the bytes are not a readable .docx archive
    """
    if not data or not is_valid_docx(data):
        raise DecodeError(
            "Invalid Word document: File does not have the expected .docx structure"
        )

    try:
        document = Document(BytesIO(data))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
        raise DecodeError(f"Failed to extract text from Word document: {e}") from e

    lines = [p.text for p in document.paragraphs if p.text.strip()]
    warnings = []
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                lines.append(" | ".join(cells))

    if document.inline_shapes:
        warnings.append(f"{len(document.inline_shapes)} embedded image(s) were not transcribed")

    return DocxText(text="\n".join(lines), warnings=warnings)


# =============================================================================
# RTF
# =============================================================================

# Groups whose content is formatting metadata rather than document text
_RTF_SKIP_DESTINATIONS = frozenset(
    {
        "aftncn", "aftnsep", "aftnsepc", "annotation", "atnauthor", "atndate",
        "atnicn", "atnid", "atnparent", "atnref", "atntime", "atrfend",
        "atrfstart", "author", "background", "bkmkend", "bkmkstart", "buptim",
        "category", "colorschememapping", "colortbl", "comment", "company",
        "creatim", "datafield", "datastore", "defchp", "defpap", "do",
        "doccomm", "docvar", "dptxbxtext", "ebcend", "ebcstart", "factoidname",
        "falt", "fchars", "ffdeftext", "ffentrymcr", "ffexitmcr", "ffformat",
        "ffhelptext", "ffl", "ffname", "ffstattext", "fldinst", "fldtype",
        "fname", "fontemb", "fontfile", "fonttbl", "footer", "footerf",
        "footerl", "footerr", "footnote", "formfield", "ftncn", "ftnsep",
        "ftnsepc", "g", "generator", "gridtbl", "header", "headerf", "headerl",
        "headerr", "hl", "hlfr", "hlinkbase", "hlloc", "hlsrc", "hsv", "htmltag",
        "info", "keycode", "keywords", "latentstyles", "lchars", "levelnumbers",
        "leveltext", "lfolevel", "linkval", "list", "listlevel", "listname",
        "listoverride", "listoverridetable", "listpicture", "liststylename",
        "listtable", "listtext", "lsdlockedexcept", "macc", "maccPr", "mailmerge",
        "manager", "mhtmltag", "mmaddfieldname", "mmathPr", "mmconnectstr",
        "mmconnectstrdata", "mmdatasource", "mmheadersource", "mmodso",
        "mmodsofieldmapdata", "mmodsofilter", "mmodsoname", "mmodsorecipdata",
        "mmodsosort", "mmodsosrc", "mmodsotable", "mmodsoudl", "mmodsoudldata",
        "mmodsouniquetag", "mmquery", "mmssconnectstr", "nesttableprops",
        "nextfile", "nonesttables", "objalias", "objclass", "objdata", "object",
        "objname", "objsect", "objtime", "oldcprops", "oldpprops", "oldsprops",
        "oldtprops", "oleclsid", "operator", "panose", "password", "passwordhash",
        "pgp", "pgptbl", "picprop", "pict", "pn", "pnseclvl", "pntext",
        "pntxta", "pntxtb", "printim", "private", "propname", "protend",
        "protstart", "protusertbl", "pxe", "result", "revtbl", "revtim",
        "rsidtbl", "rxe", "shp", "shpgrp", "shpinst", "shppict", "shprslt",
        "shptxt", "sn", "sp", "staticval", "stylesheet", "subject", "sv",
        "svb", "tc", "template", "themedata", "title", "txe", "ud", "upr",
        "userprops", "wgrffmtfilter", "windowcaption", "writereservation",
        "writereservhash", "xe", "xform", "xmlattrname", "xmlattrvalue",
        "xmlclose", "xmlname", "xmlnstbl", "xmlopen",
    }
)

_RTF_SPECIAL_CHARS = {
    "par": "\n",
    "line": "\n",
    "sect": "\n\n",
    "page": "\n\n",
    "row": "\n",
    "cell": " | ",
    "tab": "\t",
    "emdash": "\u2014",
    "endash": "\u2013",
    "emspace": "\u2003",
    "enspace": "\u2002",
    "qmspace": "\u2005",
    "bullet": "\u2022",
    "lquote": "\u2018",
    "rquote": "\u2019",
    "ldblquote": "\u201c",
    "rdblquote": "\u201d",
}

_RTF_TOKEN = re.compile(
    r"\\([a-z]{1,32})(-?\d{1,10})?[ ]?"  # control word with optional parameter
    r"|\\'([0-9a-f]{2})"  # hex-escaped byte
    r"|\\([^a-z])"  # control symbol
    r"|([{}])"  # group boundary
    r"|[\r\n]+"  # raw line breaks carry no meaning
    r"|(.)",  # literal text
    re.IGNORECASE | re.DOTALL,
)


def strip_rtf(rtf: str) -> str:
    """
    Reduce an RTF document to its visible text.

    Tracks group nesting so destinations listed in ``_RTF_SKIP_DESTINATIONS``
    (and any ``{\\*...}`` ignorable destination) contribute nothing. Unicode
    escapes (``\\uN``) honour the ``\\ucN`` fallback skip count.
    """
    stack: list[tuple[int, bool]] = []
    ignorable = False
    skip_count = 1  # \ucN
    pending_skip = 0
    out: list[str] = []

    for match in _RTF_TOKEN.finditer(rtf):
        word, arg, hexcode, symbol, brace, literal = match.groups()

        if brace:
            pending_skip = 0
            if brace == "{":
                stack.append((skip_count, ignorable))
            elif stack:
                skip_count, ignorable = stack.pop()
            continue

        if symbol:
            pending_skip = 0
            if symbol == "~":
                if not ignorable:
                    out.append("\u00a0")
            elif symbol in "{}\\":
                if not ignorable:
                    out.append(symbol)
            elif symbol == "*":
                ignorable = True
            continue

        if word:
            pending_skip = 0
            lowered = word.lower()
            if lowered in _RTF_SKIP_DESTINATIONS:
                ignorable = True
            elif ignorable:
                pass
            elif lowered in _RTF_SPECIAL_CHARS:
                out.append(_RTF_SPECIAL_CHARS[lowered])
            elif lowered == "uc":
                skip_count = int(arg or 1)
            elif lowered == "u" and arg is not None:
                code = int(arg)
                if code < 0:
                    code += 0x10000
                out.append(chr(code))
                pending_skip = skip_count
            continue

        if hexcode:
            if pending_skip > 0:
                pending_skip -= 1
            elif not ignorable:
                out.append(bytes([int(hexcode, 16)]).decode("cp1252", errors="replace"))
            continue

        if literal is not None:
            if pending_skip > 0:
                pending_skip -= 1
            elif not ignorable:
                out.append(literal)

    text = "".join(out)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def decode_rtf(data: bytes) -> str:
    # RTF is 7-bit; non-ASCII content arrives escaped
    return strip_rtf(data.decode("latin-1"))


# =============================================================================
# Images
# =============================================================================


def validate_image(data: bytes, max_pixels: int) -> ImageCheck:
    """
    Check that the bytes decode as an image within the pixel budget.

    Only the header is read; pixel data is not decoded.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            width, height = img.size
            image_format = img.format
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        return ImageCheck(valid=False, error=f"Invalid image: {e}")

    if width <= 0 or height <= 0:
        return ImageCheck(valid=False, error="Invalid image: missing dimensions")

    pixels = width * height
    if pixels > max_pixels:
        return ImageCheck(
            valid=False,
            width=width,
            height=height,
            format=image_format,
            error=(
                f"Image too large ({round(pixels / 1_000_000)}MP). "
                f"Maximum resolution is {round(max_pixels / 1_000_000)}MP."
            ),
        )

    return ImageCheck(valid=True, width=width, height=height, format=image_format)


def normalize_image_to_jpeg(data: bytes, quality: int = 90) -> bytes:
    """
    Re-encode any supported image as an upright RGB JPEG.

    EXIF orientation is applied so phone photos reach the vision model the
    right way up.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            upright = ImageOps.exif_transpose(img)
            if upright.mode != "RGB":
                upright = upright.convert("RGB")
            buffer = BytesIO()
            upright.save(buffer, format="JPEG", quality=quality)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeError(f"Failed to normalise image: {e}") from e

    logger.debug(f"Normalised image to JPEG ({len(data)} -> {buffer.tell()} bytes)")
    return buffer.getvalue()
