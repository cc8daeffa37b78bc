"""PDF text extraction: text layer first, Tesseract OCR as the fallback."""

from __future__ import annotations

import io
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from statistics import fmean

import fitz  # PyMuPDF
import pdfplumber
import pytesseract
from PIL import Image, ImageFilter, ImageOps

from statement_rewards.config import OcrConfig
from statement_rewards.errors import ExtractionError, OcrError
from statement_rewards.models import ExtractedText, ExtractionMethod

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 100
MIN_CHARS_PER_PAGE = 200
MAX_GIBBERISH_RATIO = 0.3

DEFAULT_PSM = 3  # fully automatic page segmentation
ALTERNATE_PSM = 6  # single uniform block of text
RETRY_ALTERNATE_BELOW = 70.0
RETRY_RAW_BELOW = 60.0
BINARY_THRESHOLD = 128

_WHITESPACE = frozenset("\n\r\t")


@dataclass(frozen=True)
class PageOcr:
    """One OCR attempt on one page image."""

    text: str
    confidence: float
    psm: int
    preprocessed: bool


def looks_scanned(text: str, page_count: int) -> bool:
    """Guess whether a PDF's text layer is missing or unusable.

    True when the text is short, sparse per page, or mostly characters
    outside printable ASCII (a broken font encoding).
    """
    stripped = text.strip()
    if len(stripped) < MIN_TEXT_LENGTH:
        return True

    if len(stripped) / max(page_count, 1) < MIN_CHARS_PER_PAGE:
        return True

    gibberish = sum(
        1 for ch in stripped if not (" " <= ch <= "~") and ch not in _WHITESPACE
    )
    return gibberish / len(stripped) > MAX_GIBBERISH_RATIO


def assess_ocr_quality(text: str, confidence: float) -> str | None:
    """Return a warning for weak OCR output, or None if it looks fine."""
    if len(text.strip()) < 10:
        return "Insufficient text extracted"
    if confidence < 40:
        return "Low OCR confidence"
    if confidence < 70:
        return "Moderate OCR confidence"
    return None


def preprocess_for_ocr(image: Image.Image) -> Image.Image:
    """Grayscale, stretch contrast, sharpen and binarize a page image."""
    gray = ImageOps.grayscale(image)
    normalized = ImageOps.autocontrast(gray)
    sharpened = normalized.filter(ImageFilter.SHARPEN)
    return sharpened.point(lambda px: 255 if px > BINARY_THRESHOLD else 0)


class TextExtractor:
    """Turn PDF bytes into text, falling back to OCR for scanned files."""

    def __init__(
        self, config: OcrConfig | None = None, *, work_dir: Path | None = None
    ) -> None:
        self.config = config or OcrConfig()
        self.work_dir = work_dir
        if self.config.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.config.tesseract_cmd

    def extract_file(self, path: Path) -> ExtractedText:
        """Read a PDF from disk and extract its text."""
        return self.extract(path.read_bytes())

    def extract(self, data: bytes) -> ExtractedText:
        """Extract text from PDF bytes.

        Raises ExtractionError if the bytes are not a readable PDF and
        OcrError if the OCR fallback fails.
        """
        text, page_count = self._read_text_layer(data)
        scanned = looks_scanned(text, page_count)

        if not scanned and len(text) > MIN_TEXT_LENGTH:
            logger.info(
                "Extracted %d characters from %d page(s) via text layer",
                len(text),
                page_count,
            )
            return ExtractedText(
                text=text,
                page_count=page_count,
                scanned=False,
                method=ExtractionMethod.DIRECT,
            )

        logger.info("Text layer unusable (%d chars), falling back to OCR", len(text))
        return self._ocr_document(data)

    @staticmethod
    def _read_text_layer(data: bytes) -> tuple[str, int]:
        """Return the concatenated page text and the page count."""
        try:
            with pdfplumber.open(io.BytesIO(data)) as pdf:
                pages = [page.extract_text() or "" for page in pdf.pages]
        except Exception as exc:
            msg = f"Failed to parse PDF: {exc}"
            raise ExtractionError(msg) from exc
        return "\n".join(pages).strip(), len(pages)

    def _ocr_document(self, data: bytes) -> ExtractedText:
        """Rasterize every page and OCR it, always removing the images."""
        if self.work_dir is not None:
            self.work_dir.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix="ocr-", dir=self.work_dir) as tmp:
            image_paths = self._rasterize(data, tmp)
            results = [self._ocr_page(path) for path in image_paths]

        if not results:
            msg = "OCR failed: PDF has no pages to recognize"
            raise OcrError(msg)

        text = "".join(
            f"\n--- Page {number} ---\n{result.text}\n"
            for number, result in enumerate(results, start=1)
        ).strip()
        confidence = fmean(result.confidence for result in results)
        warning = assess_ocr_quality(text, confidence)

        logger.info(
            "OCR completed for %d page(s), average confidence %.2f",
            len(results),
            confidence,
        )
        if warning:
            logger.warning("OCR quality: %s", warning)

        return ExtractedText(
            text=text,
            page_count=len(results),
            scanned=True,
            method=ExtractionMethod.OCR,
            ocr_confidence=confidence,
            ocr_warning=warning,
        )

    def _rasterize(self, data: bytes, out_dir: str) -> list[Path]:
        """Render each page to a PNG in out_dir, in page order."""
        zoom = self.config.dpi / 72.0
        matrix = fitz.Matrix(zoom, zoom)
        paths: list[Path] = []
        try:
            doc = fitz.open(stream=data, filetype="pdf")
            try:
                for index, page in enumerate(doc):
                    pix = page.get_pixmap(matrix=matrix)
                    path = Path(out_dir) / f"page-{index + 1:03d}.png"
                    pix.save(str(path))
                    paths.append(path)
            finally:
                doc.close()
        except (RuntimeError, ValueError, OSError) as exc:
            msg = f"Failed to convert PDF to images: {exc}"
            raise OcrError(msg) from exc
        return paths

    def _ocr_page(self, image_path: Path) -> PageOcr:
        """OCR one page, retrying with other settings on low confidence."""
        with Image.open(image_path) as image:
            image.load()
            best = self._recognize(image, psm=DEFAULT_PSM, preprocess=True)

            if best.confidence < RETRY_ALTERNATE_BELOW:
                logger.debug(
                    "Low confidence %.2f on %s, retrying with PSM %d",
                    best.confidence,
                    image_path.name,
                    ALTERNATE_PSM,
                )
                alternate = self._recognize(image, psm=ALTERNATE_PSM, preprocess=True)
                if alternate.confidence > best.confidence:
                    best = alternate

            if best.confidence < RETRY_RAW_BELOW:
                logger.debug("Retrying %s without preprocessing", image_path.name)
                raw = self._recognize(image, psm=DEFAULT_PSM, preprocess=False)
                if raw.confidence > best.confidence:
                    best = raw

        logger.debug(
            "Best OCR confidence for %s: %.2f (psm=%d, preprocessed=%s)",
            image_path.name,
            best.confidence,
            best.psm,
            best.preprocessed,
        )
        return best

    def _recognize(self, image: Image.Image, *, psm: int, preprocess: bool) -> PageOcr:
        """Run Tesseract once and rebuild line-ordered text from word boxes."""
        source = preprocess_for_ocr(image) if preprocess else image
        try:
            data = pytesseract.image_to_data(
                source,
                lang=self.config.lang,
                config=f"--oem 3 --psm {psm}",
                output_type=pytesseract.Output.DICT,
            )
        except (pytesseract.TesseractError, OSError, RuntimeError) as exc:
            msg = f"OCR failed: {exc}"
            raise OcrError(msg) from exc

        return PageOcr(
            text=_words_to_text(data),
            confidence=_mean_confidence(data),
            psm=psm,
            preprocessed=preprocess,
        )


def _words_to_text(data: dict[str, list[object]]) -> str:
    """Join recognized words into lines keyed by block/paragraph/line."""
    lines: dict[tuple[object, object, object], list[str]] = {}
    for i, word in enumerate(data.get("text", [])):
        word = str(word or "").strip()
        if not word:
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word)
    return "\n".join(" ".join(words) for words in lines.values())


def _mean_confidence(data: dict[str, list[object]]) -> float:
    """Mean confidence over recognized words; -1 entries are layout rows."""
    scores = []
    for word, conf in zip(data.get("text", []), data.get("conf", []), strict=False):
        if not str(word or "").strip():
            continue
        value = float(conf)  # type: ignore[arg-type]
        if value >= 0:
            scores.append(value)
    return fmean(scores) if scores else 0.0
