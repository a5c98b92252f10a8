#!/usr/bin/env python3
"""
PDF Anonymizer - Find sensitive text in scanned or digital PDFs and burn
black redactions into the output.

Search terms are named patterns (<bsn>, <email>, <phone>, <iban>, <date>,
<postcode>) or regular expressions. Digital pages are matched against their
native text layer; scanned pages are OCRed with Tesseract first. Pages with
matches are flattened to a raster so nothing survives under a redaction.

Runs entirely locally - no data leaves your machine.
"""

import sys
import json
import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from PIL import Image

from anonymizer_apply import RedactionApplier
from anonymizer_config import AnonymizerConfig, configure_environment
from anonymizer_coords import pdf_to_display, rotate_bbox, rotated_size
from anonymizer_geometry import EstimatedHit, QuadCorrelator, estimate_bbox, quad_to_bbox
from anonymizer_ocr import OCROrchestrator
from anonymizer_patterns import CompiledTerm, compile_term, pattern_keys
from anonymizer_render import PageRenderer
from anonymizer_store import DragTracker, MatchStore, drag_to_bbox
from anonymizer_types import (
    AnonymizerError, BBox, Match, PageGeometry, Point, TextBlock,
)

logger = logging.getLogger(__name__)

# (percent, message)
ProgressCallback = Callable[[float, str], None]


def parse_page_spec(spec: Optional[str], total_pages: int) -> List[int]:
    """
    Parse a page specification like "1,3,5-10,15" into 0-based page numbers.

    Pages are 1-based in the spec, clamped to the document and returned
    sorted without duplicates. An empty spec selects every page.
    """
    if not spec or not spec.strip():
        return list(range(total_pages))

    pages = set()
    for part in (p.strip() for p in spec.split(',')):
        if not part:
            continue
        if '-' in part:
            start_s, _, end_s = part.partition('-')
            try:
                start, end = int(start_s.strip()), int(end_s.strip())
            except ValueError:
                continue
            for i in range(max(1, start), min(total_pages, end) + 1):
                pages.add(i - 1)
        else:
            try:
                num = int(part)
            except ValueError:
                continue
            if 1 <= num <= total_pages:
                pages.add(num - 1)

    return sorted(pages)


@dataclass
class Overlay:
    """A match drawn over a page preview, in display pixels"""
    index: int
    bbox: BBox
    is_manual: bool


class AnonymizerSession:
    """
    State for one open document: renderer, OCR caches, page geometry and the
    match list.

    load() replaces the document and clears every per-document cache. The
    OCR worker pool outlives documents.
    """

    def __init__(self, config: Optional[AnonymizerConfig] = None,
                 engine_factory: Optional[Callable[[], object]] = None,
                 renderer_factory: Optional[Callable[[bytes], object]] = None,
                 writer_factory: Optional[Callable[[bytes], object]] = None):
        self.config = config or AnonymizerConfig()
        self.renderer_factory = renderer_factory or self._default_renderer
        self.writer_factory = writer_factory
        self.renderer = None
        self.data: Optional[bytes] = None
        self.ocr = OCROrchestrator(None, self.config, engine_factory=engine_factory)
        self.store = MatchStore()
        self.geometries: Dict[int, PageGeometry] = {}

    def _default_renderer(self, data: bytes) -> PageRenderer:
        return PageRenderer(data, poppler_path=self.config.poppler_path)

    @property
    def page_count(self) -> int:
        return self.renderer.page_count if self.renderer is not None else 0

    @property
    def matches(self) -> List[Match]:
        return self.store.matches

    def _require_document(self):
        if self.renderer is None:
            raise AnonymizerError("No document loaded")

    def load(self, data: bytes) -> int:
        """Open a new document; returns its page count"""
        renderer = self.renderer_factory(data)
        if self.renderer is not None and hasattr(self.renderer, 'close'):
            self.renderer.close()
        self.renderer = renderer
        self.data = data
        self.reset()
        logger.info("Loaded document with %d page(s)", self.page_count)
        return self.page_count

    def reset(self):
        self.ocr.reset(self.renderer)
        self.store.reset(self.page_count)
        self.geometries = {}

    # --- Page geometry and previews ---

    def page_geometry(self, page_num: int) -> PageGeometry:
        self._require_document()
        geometry = self.geometries.get(page_num)
        if geometry is None:
            rotation = self.ocr.rotation(page_num)
            width, height = rotated_size(*self.renderer.page_size(page_num), rotation)
            geometry = PageGeometry(width, height, self.config.preview_scale(width), rotation)
            self.geometries[page_num] = geometry
        return geometry

    def _drop_stale_geometry(self):
        for page_num, geometry in list(self.geometries.items()):
            if geometry.rotation != self.ocr.rotation(page_num):
                logger.debug("Page %d orientation changed, preview is stale", page_num + 1)
                del self.geometries[page_num]

    def generate_previews(self) -> List[Tuple[PageGeometry, Image.Image]]:
        """Render every page for on-screen preview"""
        self._require_document()
        previews = []
        for page_num in range(self.page_count):
            geometry = self.page_geometry(page_num)
            image = self.renderer.render_page(page_num, geometry.render_scale, geometry.rotation)
            previews.append((geometry, image))
        return previews

    def overlays(self, page_num: int, disp_scale: float) -> List[Overlay]:
        geometry = self.page_geometry(page_num)
        return [
            Overlay(i, pdf_to_display(m.bbox, geometry.render_scale, disp_scale), m.is_manual)
            for i, m in enumerate(self.store)
            if m.page_num == page_num
        ]

    # --- Scanning ---

    def _has_native_text(self, blocks: Iterable[TextBlock]) -> bool:
        return any(len(b.text.strip()) > self.config.native_text_min_chars for b in blocks)

    def _match_ocr_blocks(self, page_num: int, terms: List[CompiledTerm]) -> List[Match]:
        found = []
        rotation = self.ocr.rotation(page_num)
        blocks = self.ocr.blocks(page_num)
        for term in terms:
            for block in blocks:
                for text, index in term.finditer(block.text):
                    found.append(Match(text, term.term,
                                       estimate_bbox(block, index, len(text)), page_num,
                                       rotation=rotation))
        return found

    def _match_native(self, page_num: int, term: CompiledTerm,
                      blocks: List[TextBlock]) -> List[Match]:
        hits = []
        for block in blocks:
            for text, index in term.finditer(block.text):
                hits.append(EstimatedHit(text, term.term,
                                         estimate_bbox(block, index, len(text)), block.bbox))
        if not hits:
            return []

        rects_by_text: Dict[str, List[BBox]] = {}
        for hit in hits:
            if hit.text not in rects_by_text:
                quads = self.renderer.search_literal(page_num, hit.text)
                rects_by_text[hit.text] = [quad_to_bbox(q) for q in quads]

        boxes = QuadCorrelator().correlate(hits, rects_by_text)

        rotation = self.ocr.rotation(page_num)
        if rotation:
            width, height = self.renderer.page_size(page_num)
            boxes = [rotate_bbox(b, width, height, rotation) for b in boxes]

        return [Match(hit.text, hit.term, box, page_num, rotation=rotation)
                for hit, box in zip(hits, boxes)]

    def scan(self, terms: Iterable[str], use_ocr: bool = True,
             on_progress: Optional[ProgressCallback] = None) -> List[Match]:
        """
        Find every term on every page.

        Automatic matches from a previous scan are replaced; manual matches
        are kept. Returns the full match list.
        """
        self._require_document()
        compiled = [compile_term(t.strip()) for t in terms if t and t.strip()]
        total = self.page_count

        def progress(percent: float, message: str):
            if on_progress:
                on_progress(percent, message)

        native: Dict[int, List[TextBlock]] = {}

        def native_blocks(page_num: int) -> List[TextBlock]:
            if page_num not in native:
                native[page_num] = self.renderer.extract_structured_text(page_num)
            return native[page_num]

        pages_to_ocr = []
        if use_ocr:
            progress(0, "Checking pages for text content...")
            for page_num in range(total):
                if self.ocr.has_blocks(page_num) or not self._has_native_text(native_blocks(page_num)):
                    pages_to_ocr.append(page_num)

        if pages_to_ocr:
            self.ocr.ocr_pages(
                pages_to_ocr,
                on_progress=lambda done, count: progress(done / count * 50,
                                                         f"OCR: {done}/{count} pages"),
            )
            self._drop_stale_geometry()

        found: List[Match] = []
        for page_num in range(total):
            progress(50 + page_num / total * 50,
                     f"Searching page {page_num + 1} of {total}...")
            if self.ocr.has_blocks(page_num):
                found.extend(self._match_ocr_blocks(page_num, compiled))
            blocks = native_blocks(page_num)
            for term in compiled:
                found.extend(self._match_native(page_num, term, blocks))

        self.store.replace_automatic(found)
        progress(100, f"Found {len(found)} match{'es' if len(found) != 1 else ''}")
        logger.info("Scan found %d match(es) for %d term(s)", len(found), len(compiled))
        return self.store.matches

    # --- Manual matches ---

    def add_manual(self, page_num: int, bbox: BBox) -> List[Match]:
        self._require_document()
        self.store.add_manual(page_num, bbox, rotation=self.ocr.rotation(page_num))
        return self.store.matches

    def add_manual_from_drag(self, page_num: int, start: Point, end: Point,
                             disp_scale: float) -> Optional[Match]:
        """Add a manual match from a drag over the preview, if large enough"""
        geometry = self.page_geometry(page_num)
        bbox = drag_to_bbox(start, end, geometry, disp_scale,
                            self.config.min_drag_size)
        if bbox is None:
            return None
        return self.store.add_manual(page_num, bbox, rotation=geometry.rotation)

    def drag_tracker(self, page_num: int, disp_scale: float) -> DragTracker:
        return DragTracker(self.page_geometry(page_num), disp_scale, self.config.min_drag_size)

    def remove_match(self, index: int) -> List[Match]:
        self.store.remove(index)
        return self.store.matches

    # --- Output ---

    def redact(self, matches: Optional[Iterable[Match]] = None,
               on_progress: Optional[ProgressCallback] = None) -> bytes:
        """Burn the matches (default: the stored ones) into a new PDF"""
        self._require_document()
        matches = self.store.matches if matches is None else list(matches)
        # Pages never OCRed here follow the rotation recorded on their matches
        rotations = dict(self.ocr.rotation_cache)
        applier = RedactionApplier(self.renderer, self.config, self.writer_factory)

        def page_progress(page_num: int, count: int):
            if on_progress:
                on_progress(page_num / count * 100, f"Redacting page {page_num + 1} of {count}...")

        return applier.apply(self.data, matches, rotations, on_progress=page_progress)

    def extract_text(self, page_spec: Optional[str] = None,
                     on_progress: Optional[ProgressCallback] = None) -> str:
        """OCR the selected pages and return their text, page by page"""
        self._require_document()
        pages = parse_page_spec(page_spec, self.page_count)
        if not pages:
            raise ValueError("No valid pages specified")

        def page_progress(done: int, count: int):
            if on_progress:
                on_progress(done / count * 100, f"OCR: {done}/{count} pages")

        blocks = self.ocr.ocr_pages(pages, on_progress=page_progress)
        parts = []
        for page_num in pages:
            text = '\n'.join(b.text for b in blocks[page_num])
            parts.append(f"--- Page {page_num + 1} ---\n{text.strip()}")
        return '\n\n'.join(parts)


def scan_document(data: bytes, terms: Iterable[str],
                  config: Optional[AnonymizerConfig] = None,
                  use_ocr: bool = True, **session_kwargs) -> List[Match]:
    """Scan a PDF for terms and return the ordered matches"""
    session = AnonymizerSession(config, **session_kwargs)
    session.load(data)
    return session.scan(terms, use_ocr=use_ocr)


def redact_document(data: bytes, matches: Iterable[Match],
                    config: Optional[AnonymizerConfig] = None, **session_kwargs) -> bytes:
    """Redact a PDF given a match list and return the new PDF bytes"""
    session = AnonymizerSession(config, **session_kwargs)
    session.load(data)
    return session.redact(matches)


def _read_terms(args) -> List[str]:
    terms = list(args.term or [])
    if args.terms_file:
        with open(args.terms_file, 'r', encoding='utf-8') as f:
            terms.extend(line.strip() for line in f)
    return [t for t in terms if t]


def _read_matches(path: str) -> List[Match]:
    """Load a match list saved with --json (the whole result or just its matches)"""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get('matches', [])
    return [Match.from_dict(d) for d in data]


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line interface"""
    parser = argparse.ArgumentParser(
        description='PDF Anonymizer - Redact sensitive text from PDF documents',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s contract.pdf -t '<bsn>' -t '<email>'
  %(prog)s scan.pdf -t 'Jansen' -o scan_clean.pdf
  %(prog)s scan.pdf -t '<iban>' --json > found.json
  %(prog)s scan.pdf --matches found.json
  %(prog)s scan.pdf --extract 1,3-5

Named patterns: """ + ', '.join(pattern_keys()) + """

This tool runs entirely locally - no data leaves your machine.
        """
    )

    parser.add_argument('input', help='PDF file to anonymize')
    parser.add_argument('-t', '--term', action='append',
                        help='Search term: a named pattern or a regular expression (repeatable)')
    parser.add_argument('--terms-file', help='File with one search term per line')
    parser.add_argument('--matches', metavar='JSON',
                        help='Redact the matches in a JSON file written by --json instead of scanning')
    parser.add_argument('-o', '--output', help='Output file path (auto-generated if not provided)')
    parser.add_argument('--no-ocr', action='store_true',
                        help='Do not OCR pages without a text layer')
    parser.add_argument('--lang', default='eng',
                        help='Tesseract language(s), e.g. nld+eng (default: eng)')
    parser.add_argument('--workers', type=int, help='Number of OCR workers (default: up to 4)')
    parser.add_argument('--extract', nargs='?', const='', metavar='PAGES',
                        help='Extract OCR text instead of redacting (pages like 1,3,5-10)')
    parser.add_argument('-q', '--quiet', action='store_true',
                        help='Quiet mode - minimal output')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose logging')
    parser.add_argument('--json', action='store_true',
                        help='Output results as JSON')

    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s')

    try:
        config = AnonymizerConfig(tesseract_lang=args.lang)
        if args.workers:
            config.pool_size = args.workers
        configure_environment(config)

        input_path = Path(args.input)
        if not input_path.exists():
            raise FileNotFoundError(f"Input file not found: {input_path}")
        if input_path.suffix.lower() != '.pdf':
            raise ValueError(f"Unsupported file type: {input_path.suffix}")

        session = AnonymizerSession(config)
        session.load(input_path.read_bytes())

        if not args.quiet and not args.json:
            print(f"Processing: {args.input}")

        if args.extract is not None:
            text = session.extract_text(args.extract)
            output_path = Path(args.output or input_path.parent / f"{input_path.stem}_extracted.txt")
            output_path.write_text(text, encoding='utf-8')
            result = {
                'input_file': str(input_path),
                'output_file': str(output_path),
                'characters': len(text),
            }
        else:
            if args.matches:
                matches = _read_matches(args.matches)
            else:
                terms = _read_terms(args)
                if not terms:
                    raise ValueError("No search terms given (use -t, --terms-file or --matches)")
                matches = session.scan(terms, use_ocr=not args.no_ocr)

            output_path = None
            if matches:
                output_path = Path(args.output or input_path.parent / f"{input_path.stem}_anonymized.pdf")
                output_path.write_bytes(session.redact(matches))

            terms_found: Dict[str, int] = {}
            for m in matches:
                terms_found[m.term] = terms_found.get(m.term, 0) + 1

            result = {
                'input_file': str(input_path),
                'output_file': str(output_path) if output_path else None,
                'redactions_count': len(matches),
                'terms': terms_found,
                'matches': [m.to_dict() for m in matches],
            }

        if args.json:
            print(json.dumps(result, indent=2))
        elif not args.quiet:
            if args.extract is not None:
                print(f"\n✓ Extracted {result['characters']} characters")
                print(f"  Output: {result['output_file']}")
            elif result['output_file']:
                print(f"\n✓ Redaction complete!")
                print(f"  Output: {result['output_file']}")
                print(f"  Redactions: {result['redactions_count']}")
                print(f"  Terms:")
                for term, count in sorted(result['terms'].items()):
                    print(f"    - {term}: {count}")
            else:
                print("\nNo matches found. Try different search terms.")

        return 0

    except Exception as e:
        if args.json:
            print(json.dumps({'error': str(e)}))
        else:
            print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
