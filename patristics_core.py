"""Core index model, aggregation, passage highlighting, and data loading for the Patristics viewer."""

# -*- coding: utf-8 -*-
# patristics_core.py
import json
import logging
import os
import re
import sys
import tempfile
import threading
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from functools import lru_cache
from logging.handlers import RotatingFileHandler
from types import MappingProxyType
from typing import Mapping, NamedTuple, Optional

import requests

from patristics_canon import SECTION_ORDER, SECTION_RANK, canonical_section

try:
    import zstandard
except ImportError:
    raise ImportError("zstandard library missing. Please install it.")


# ==============================================================================
#  CONFIG CLASS
# ==============================================================================
class Config:
    """Static paths and limits used by the viewer core."""

    @staticmethod
    def _pick_writable_dir(primary: str, fallback: str) -> str:
        """
        Prefer primary; if we cannot create/write there, use fallback.
        Returns a directory path that is guaranteed (best-effort) to exist and be writable.
        """
        try:
            os.makedirs(primary, exist_ok=True)
            test_path = os.path.join(primary, ".__write_test__")
            with open(test_path, "w", encoding="utf-8") as f:
                f.write("ok")
            os.remove(test_path)
            return primary
        except OSError:
            pass

        os.makedirs(fallback, exist_ok=True)
        return fallback

    if getattr(sys, "frozen", False):
        BASE_DIR = os.path.dirname(sys.executable)
    else:
        BASE_DIR = os.path.dirname(os.path.abspath(__file__))

    # Static data files: a local directory or an http(s) URL.
    DATA_ROOT = os.getenv("PATRISTICS_DATA_ROOT", os.path.join(BASE_DIR, "data", "static"))
    DATA_SUFFIX = ".json.zst"
    PLAIN_SUFFIX = ".json"

    # User data directory (logs)
    DATA_DIR = _pick_writable_dir(
        os.path.join(os.getenv("LOCALAPPDATA", os.path.expanduser("~")), "PatristicsViewer"),
        os.path.join(tempfile.gettempdir(), "PatristicsViewer"),
    )
    LOG_FILE = os.path.join(DATA_DIR, "patristics.log")
    # Console verbosity; the log file always records DEBUG.
    LOG_LEVEL = os.getenv("PATRISTICS_LOG_LEVEL", "INFO").upper()

    # Settings
    FETCH_TIMEOUT = 15
    FETCH_RETRIES = 2
    FETCH_BACKOFF = 1.0
    FETCH_WORKERS = 8
    DEFAULT_CATEGORY = "Other"
    VERSE_PREVIEW_LIMIT = 140
    TOP_BOOKS_LIMIT = 20


# ==============================================================================
#  LOGGING
# ==============================================================================


def console_level(name):
    """Numeric level for a name like "debug"; unknown names fall back to INFO."""
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logger():
    """Set up the "patristics" logger once: DEBUG to the rotating log file, Config.LOG_LEVEL to the console."""
    logger = logging.getLogger("patristics")
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)

    # Loads run on pool and Qt worker threads, so the file log names the thread.
    file_handler = RotatingFileHandler(Config.LOG_FILE, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(threadName)s %(name)s - %(message)s"))
    file_handler.setLevel(logging.DEBUG)
    logger.addHandler(file_handler)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    console.setLevel(console_level(Config.LOG_LEVEL))
    logger.addHandler(console)

    logger.propagate = False
    return logger


def get_logger(name=None):
    """Child of the "patristics" logger; module names are shortened ("patristics_core" -> "patristics.core")."""
    base_logger = configure_logger()
    if not name:
        return base_logger
    if name.startswith("patristics_"):
        name = name[len("patristics_"):]
    return base_logger.getChild(name)


LOGGER = get_logger(__name__)


# ==============================================================================
#  INDEX MODEL
# ==============================================================================
@dataclass(frozen=True)
class Work:
    """An authored manuscript in the corpus."""
    id: object
    author: str
    title: str
    year: Optional[int] = None
    category: str = Config.DEFAULT_CATEGORY
    ref_count: Optional[int] = None
    link: Optional[str] = None

    @classmethod
    def from_json(cls, data):
        year = data.get("year")
        return cls(
            id=data["id"],
            author=data.get("author") or "Unknown",
            title=data.get("title") or "",
            year=int(year) if year is not None else None,
            category=data.get("category") or Config.DEFAULT_CATEGORY,
            ref_count=data.get("ref_count"),
            link=data.get("ccel_url"),
        )


def work_category(work):
    return work.category or Config.DEFAULT_CATEGORY


@dataclass(frozen=True)
class CategorizedChapter:
    """Index entry for a chapter whose references are broken down by category."""
    number: int
    by_category: Mapping[str, int]

    @property
    def total(self):
        return sum(self.by_category.values())


@dataclass(frozen=True)
class CountOnlyChapter:
    """Index entry from legacy data that only carries an unconditional total."""
    number: int
    count: int

    @property
    def total(self):
        return self.count


def chapter_from_json(data):
    number = int(data["ch"])
    by_cat = data.get("by_cat")
    if by_cat is None:
        return CountOnlyChapter(number, int(data.get("count", 0)))

    chapter = CategorizedChapter(number, MappingProxyType({str(k): int(v) for k, v in by_cat.items()}))
    declared = data.get("count")
    if declared is not None and declared != chapter.total:
        LOGGER.warning("Chapter %s declares %s refs but categories sum to %s", number, declared, chapter.total)
    return chapter


@dataclass(frozen=True)
class Book:
    slug: str
    name: str
    chapters: tuple

    def chapter(self, number):
        for ch in self.chapters:
            if ch.number == number:
                return ch
        return None


@dataclass(frozen=True)
class IndexModel:
    """Immutable corpus index: books in canonical order and the works that cite them."""
    books: tuple
    works: tuple
    works_by_id: Mapping = field(init=False, repr=False, compare=False)
    books_by_slug: Mapping = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "works_by_id", MappingProxyType({w.id: w for w in self.works}))
        object.__setattr__(self, "books_by_slug", MappingProxyType({b.slug: b for b in self.books}))

    @classmethod
    def from_json(cls, data):
        books = []
        for raw in data.get("books", []):
            chapters = []
            seen = set()
            for raw_ch in raw.get("chapters", []):
                ch = chapter_from_json(raw_ch)
                if ch.number in seen:
                    LOGGER.warning("Duplicate chapter %s in %s ignored", ch.number, raw.get("slug"))
                    continue
                seen.add(ch.number)
                chapters.append(ch)
            books.append(Book(raw["slug"], raw.get("name") or raw["slug"], tuple(chapters)))
        works = tuple(Work.from_json(w) for w in data.get("works", []))
        return cls(tuple(books), works)

    def work(self, work_id):
        return self.works_by_id.get(work_id)

    def book(self, slug):
        return self.books_by_slug.get(slug)


@dataclass(frozen=True)
class Citation:
    """One occurrence of a work referencing a chapter, optionally at a verse."""
    work_id: object
    verse: Optional[str]
    passage_id: object

    @classmethod
    def from_json(cls, data):
        verse = data.get("v")
        return cls(data.get("w"), str(verse) if verse is not None else None, data.get("p"))


@dataclass(frozen=True)
class ChapterDetail:
    number: int
    citations: tuple


@dataclass(frozen=True)
class BookDetail:
    slug: str
    name: str
    chapters: tuple

    @classmethod
    def from_json(cls, slug, data):
        chapters = tuple(
            ChapterDetail(int(ch["ch"]), tuple(Citation.from_json(r) for r in ch.get("refs", [])))
            for ch in data.get("chapters", [])
        )
        return cls(slug, data.get("name") or slug, chapters)

    def chapter(self, number):
        for ch in self.chapters:
            if ch.number == number:
                return ch
        return None


@dataclass(frozen=True)
class WorkCitation:
    """A citation as listed in a work's own detail file."""
    book_name: str
    book_slug: str
    chapter: int
    verse: Optional[str]
    passage_id: object

    @classmethod
    def from_json(cls, data):
        verse = data.get("v")
        return cls(
            book_name=data.get("book") or data.get("book_slug") or "",
            book_slug=data.get("book_slug") or "",
            chapter=int(data.get("chapter", 0)),
            verse=str(verse) if verse is not None else None,
            passage_id=data.get("p"),
        )

    @property
    def location(self):
        if self.verse:
            return f"{self.book_name} {self.chapter}:{self.verse}"
        return f"{self.book_name} {self.chapter}"


@dataclass(frozen=True)
class WorkDetail:
    id: object
    author: str
    title: str
    year: Optional[int]
    link: Optional[str]
    citations: tuple

    @classmethod
    def from_json(cls, work_id, data):
        year = data.get("year")
        return cls(
            id=work_id,
            author=data.get("author") or "Unknown",
            title=data.get("title") or "",
            year=int(year) if year is not None else None,
            link=data.get("ccel_url"),
            citations=tuple(WorkCitation.from_json(r) for r in data.get("refs", [])),
        )


# ==============================================================================
#  CATEGORY FILTERS & HEATMAP
# ==============================================================================
def filtered_count(chapter, active_categories):
    """Refs in a chapter limited to the active categories (legacy chapters keep their total)."""
    if isinstance(chapter, CountOnlyChapter):
        return chapter.count
    return sum(n for cat, n in chapter.by_category.items() if cat in active_categories)


def book_total(book, active_categories):
    return sum(filtered_count(ch, active_categories) for ch in book.chapters)


# Ratios are percentages of the sibling maximum; a count on a boundary takes the higher level.
HEAT_THRESHOLDS = (15, 40, 70)


def heat_level(count, max_count):
    """Discrete 0-4 intensity of count relative to the largest count among its siblings."""
    if count == 0:
        return 0
    if max_count <= 0:
        return len(HEAT_THRESHOLDS) + 1
    level = 1
    for threshold in HEAT_THRESHOLDS:
        if count * 100 < threshold * max_count:
            return level
        level += 1
    return level


# ==============================================================================
#  VERSE GROUPING
# ==============================================================================
WHOLE_CHAPTER = "whole"
ALL_VERSES = "all"

_LEADING_DIGITS = re.compile(r"^([0-9]+)")
_ALL_DIGITS = re.compile(r"^[0-9]+$")


def primary_verse_key(locator):
    """'13-17' -> '13', None -> 'whole'; locators without a leading number pass through."""
    if locator is None:
        return WHOLE_CHAPTER
    match = _LEADING_DIGITS.match(locator)
    return match.group(1) if match else locator


def verse_sort_key(key):
    if key == WHOLE_CHAPTER:
        return (0, 0, "")
    if _ALL_DIGITS.match(key):
        return (1, int(key), key)
    return (2, 0, key)


def group_by_verse(citations, works_by_id, active_categories):
    """Citations keyed by primary verse, 'whole' first then verses in numeric order."""
    groups = defaultdict(list)
    for citation in citations:
        work = works_by_id.get(citation.work_id)
        if work is None:
            continue
        if work_category(work) not in active_categories:
            continue
        groups[primary_verse_key(citation.verse)].append(citation)
    return {key: groups[key] for key in sorted(groups, key=verse_sort_key)}


# ==============================================================================
#  PASSAGE HIGHLIGHTER
# ==============================================================================
class Highlight(NamedTuple):
    prefix: str
    highlighted: str
    suffix: str

    @property
    def text(self):
        return self.prefix + self.highlighted + self.suffix


_SENTENCE_ENDINGS = ".!?"
_SENTENCE_OPENERS = "\"(["
_CLOSING_MARKS = "'\")]"

_ROMAN_NUMERALS = (
    (100, "c"), (90, "xc"), (50, "l"), (40, "xl"),
    (10, "x"), (9, "ix"), (5, "v"), (4, "iv"), (1, "i"),
)


def to_roman(number):
    """Lowercase Roman numeral, as used for chapter numbers in older editions."""
    out = []
    for value, symbol in _ROMAN_NUMERALS:
        while number >= value:
            out.append(symbol)
            number -= value
    return "".join(out)


def _verse_number(locator):
    if locator is None:
        return None
    locator = str(locator).strip()
    if not locator or locator == WHOLE_CHAPTER:
        return None
    match = _LEADING_DIGITS.match(locator)
    return match.group(1) if match else None


@lru_cache(maxsize=1024)
def _citation_pattern(chapter, verse):
    alternatives = [str(chapter)]
    roman = to_roman(chapter)
    if roman:
        alternatives.append(roman)
    return re.compile(r"(?:%s)[.:\s]+%s\b" % ("|".join(alternatives), verse), re.IGNORECASE)


def _is_opener(ch):
    return "A" <= ch <= "Z" or ch in _SENTENCE_OPENERS


def _opens_sentence(text, pos):
    """Whitespace at pos followed by a capital letter or opening quote/bracket."""
    n = len(text)
    j = pos
    while j < n and text[j].isspace():
        j += 1
    return pos < j < n and _is_opener(text[j])


def _closes_sentence(text, pos):
    """Whether punctuation just before pos ends a sentence (abbreviations like 'Rom.' do not)."""
    n = len(text)
    while pos < n and text[pos] in _CLOSING_MARKS:
        pos += 1
    j = pos
    while j < n and text[j].isspace():
        j += 1
    if j == n:
        return True
    return j > pos and _is_opener(text[j])


def _sentence_start(text, anchor):
    start = anchor
    while start > 0:
        prev = text[start - 1]
        if prev == "\n" and (start < 2 or text[start - 2] == "\n"):
            break
        if prev in _SENTENCE_ENDINGS and _opens_sentence(text, start):
            break
        start -= 1
    while start < anchor and text[start] == " ":
        start += 1
    return start


def _sentence_end(text, anchor):
    n = len(text)
    end = anchor
    while end < n:
        ch = text[end]
        if ch == "\n" and end + 1 < n and text[end + 1] == "\n":
            return end + 2
        if ch in _SENTENCE_ENDINGS and _closes_sentence(text, end + 1):
            return end + 1
        end += 1
    return end


def highlight(text, chapter, verse_locator):
    """
    Split a quoted passage around the sentence that cites chapter:verse.

    The chapter may appear in Arabic or Roman numerals ("8. 13", "viii. 13",
    "VIII:13"). Returns (prefix, highlighted, suffix); when nothing can be
    located the whole text is the prefix.
    """
    text = text or ""
    verse = _verse_number(verse_locator)
    if not text or verse is None:
        return Highlight(text, "", "")
    try:
        chapter = int(chapter)
    except (TypeError, ValueError):
        return Highlight(text, "", "")

    match = _citation_pattern(chapter, verse).search(text)
    if not match:
        return Highlight(text, "", "")

    start = _sentence_start(text, match.start())
    end = _sentence_end(text, match.end())
    return Highlight(text[:start], text[start:end], text[end:])


# ==============================================================================
#  ERA BUCKETS
# ==============================================================================
BUCKET_WIDTH_STEPS = ((200, 25), (500, 50), (1000, 100), (2000, 200))
WIDEST_BUCKET = 500


def choose_bucket_width(span):
    """Bucket width giving roughly 6-10 columns for a span of years."""
    for limit, width in BUCKET_WIDTH_STEPS:
        if span < limit:
            return width
    return WIDEST_BUCKET


@dataclass(frozen=True)
class EraBucket:
    start: int
    width: int
    section_totals: tuple
    work_count: int

    @property
    def end(self):
        return self.start + self.width

    @property
    def label(self):
        return str(self.start)

    @property
    def total(self):
        return sum(n for _, n in self.section_totals)

    def count(self, section):
        for name, n in self.section_totals:
            if name == section:
                return n
        return 0

    def share(self, section):
        total = self.total
        return self.count(section) / total if total else 0.0


@dataclass(frozen=True)
class EraTimeline:
    bucket_width: Optional[int]
    buckets: tuple
    sections: tuple
    undated_count: int
    failed_work_ids: tuple = ()


def section_counts(citations):
    counts = defaultdict(int)
    for citation in citations:
        counts[canonical_section(citation.book_slug)] += 1
    return counts


def bucket_works_by_era(works, active_categories, citations_by_work, bucket_width=None):
    """
    Bucket dated works of the active categories into fixed-width year ranges.

    Each bucket sums, per canonical section, the citations of the works it
    holds; sections always come out in canonical order. Works without a year
    are only counted in ``undated_count``.
    """
    active = []
    seen = set()
    for work in works:
        if work.id in seen or work_category(work) not in active_categories:
            continue
        seen.add(work.id)
        active.append(work)

    dated = sorted((w for w in active if w.year is not None), key=lambda w: w.year)
    undated_count = len(active) - len(dated)
    if not dated:
        return EraTimeline(bucket_width, (), (), undated_count)

    width = bucket_width or choose_bucket_width(dated[-1].year - dated[0].year)

    totals = defaultdict(lambda: defaultdict(int))
    members = defaultdict(set)
    for work in dated:
        start = (work.year // width) * width
        members[start].add(work.id)
        for section, n in section_counts(citations_by_work.get(work.id, ())).items():
            totals[start][section] += n

    buckets = []
    for start in sorted(members):
        ordered = sorted(totals[start].items(), key=lambda item: SECTION_RANK[item[0]])
        buckets.append(EraBucket(start, width, tuple((s, n) for s, n in ordered if n), len(members[start])))

    sections = tuple(s for s in SECTION_ORDER if any(b.count(s) for b in buckets))
    return EraTimeline(width, tuple(buckets), sections, undated_count)


# ==============================================================================
#  SELECTION & GENERATIONS
# ==============================================================================
MODES = ("scripture", "works", "viz")


@dataclass(frozen=True)
class Selection:
    """What the reader is looking at; views are recomputed from this value."""
    mode: str = "viz"
    book: Optional[str] = None
    chapter: Optional[int] = None
    verse: Optional[str] = None
    work_id: object = None


def switch_mode(selection, mode):
    if mode not in MODES:
        raise ValueError(f"Unknown mode: {mode}")
    return replace(selection, mode=mode)


def toggle_book(selection, slug):
    if selection.book == slug:
        return replace(selection, book=None, chapter=None, verse=None)
    return replace(selection, book=slug, chapter=None, verse=None)


def select_chapter(selection, slug, chapter):
    """Open the verse table of a chapter."""
    return replace(selection, mode="scripture", book=slug, chapter=chapter, verse=None)


def select_verse(selection, verse_key):
    return replace(selection, verse=verse_key)


def select_work(selection, work_id):
    return replace(selection, mode="works", work_id=work_id)


def navigate_to_book(selection, index, slug, active_categories):
    """Jump to a book, opening all citations of its first chapter with active refs."""
    book = index.book(slug)
    first = first_active_chapter(book, active_categories) if book else None
    if first is None:
        return replace(selection, mode="scripture", book=slug, chapter=None, verse=None)
    return replace(selection, mode="scripture", book=slug, chapter=first.number, verse=ALL_VERSES)


class RenderGeneration:
    """Monotonic tag for recomputations; a result tagged with an older value is stale."""

    def __init__(self):
        self.current = 0

    def advance(self):
        self.current += 1
        return self.current

    def is_current(self, generation):
        return generation == self.current


# ==============================================================================
#  DERIVED VIEWS
# ==============================================================================
class ChapterDot(NamedTuple):
    number: int
    count: int
    heat: int


class SidebarBook(NamedTuple):
    book: Book
    total: int
    chapters: tuple


class BookCell(NamedTuple):
    book: Book
    total: int
    heat: int


class TopBook(NamedTuple):
    book: Book
    total: int
    by_category: tuple


class WorksTimeline(NamedTuple):
    works: tuple
    lanes: tuple
    min_year: Optional[int]
    max_year: Optional[int]
    max_refs: int
    undated_count: int


class VerseRow(NamedTuple):
    key: str
    label: str
    preview: str
    count: int
    heat: int


class CitationCard(NamedTuple):
    work: Work
    citation: Citation
    verse_tag: str
    highlight: Highlight


class WorkCard(NamedTuple):
    citation: WorkCitation
    location: str
    highlight: Highlight


def corpus_stats(index):
    total_refs = sum(ch.total for book in index.books for ch in book.chapters)
    return {"refs": total_refs, "books": len(index.books), "works": len(index.works)}


def category_names(index):
    return sorted({work_category(w) for w in index.works})


def active_works(index, active_categories):
    return [w for w in index.works if work_category(w) in active_categories]


def first_active_chapter(book, active_categories):
    for ch in book.chapters:
        if filtered_count(ch, active_categories) > 0:
            return ch
    return None


def sidebar_books(index, active_categories):
    """Books with active refs, each with its chapter dots scaled to the book's busiest chapter."""
    entries = []
    for book in index.books:
        counts = [(ch.number, filtered_count(ch, active_categories)) for ch in book.chapters]
        counts = [(number, n) for number, n in counts if n > 0]
        if not counts:
            continue
        max_count = max(n for _, n in counts)
        dots = tuple(ChapterDot(number, n, heat_level(n, max_count)) for number, n in counts)
        entries.append(SidebarBook(book, sum(n for _, n in counts), dots))
    return entries


def book_coverage(index, active_categories):
    totals = [(book, book_total(book, active_categories)) for book in index.books]
    max_total = max([1] + [t for _, t in totals])
    return [BookCell(book, total, heat_level(total, max_total)) for book, total in totals]


def top_books(index, active_categories, limit=Config.TOP_BOOKS_LIMIT):
    """Most referenced books with their per-category split; legacy chapters carry no split."""
    rows = []
    for book in index.books:
        by_cat = defaultdict(int)
        for ch in book.chapters:
            if isinstance(ch, CountOnlyChapter):
                continue
            for cat, n in ch.by_category.items():
                if cat in active_categories:
                    by_cat[cat] += n
        total = sum(by_cat.values())
        if total > 0:
            rows.append(TopBook(book, total, tuple(sorted(by_cat.items()))))
    rows.sort(key=lambda row: row.total, reverse=True)
    return rows[:limit]


def category_totals(index, active_categories):
    totals = defaultdict(int)
    for book in index.books:
        for ch in book.chapters:
            if isinstance(ch, CountOnlyChapter):
                continue
            for cat, n in ch.by_category.items():
                if cat in active_categories:
                    totals[cat] += n
    entries = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return entries, sum(totals.values())


def works_timeline(index, active_categories):
    works = active_works(index, active_categories)
    dated = tuple(sorted((w for w in works if w.year is not None), key=lambda w: w.year))
    lanes = tuple(sorted({work_category(w) for w in dated}))
    max_refs = max([1] + [w.ref_count or 0 for w in dated])
    return WorksTimeline(
        works=dated,
        lanes=lanes,
        min_year=dated[0].year if dated else None,
        max_year=dated[-1].year if dated else None,
        max_refs=max_refs,
        undated_count=len(works) - len(dated),
    )


def _verse_preview(kjv_chapter, key):
    raw = (kjv_chapter or {}).get(key, "") if key != WHOLE_CHAPTER else ""
    limit = Config.VERSE_PREVIEW_LIMIT
    return raw[:limit - 3] + "…" if len(raw) > limit else raw


def verse_table(chapter_detail, index, active_categories, kjv_chapter=None):
    """Rows of the verse table: one per verse group, heat relative to the busiest verse."""
    if chapter_detail is None:
        return []
    groups = group_by_verse(chapter_detail.citations, index.works_by_id, active_categories)
    if not groups:
        return []
    max_count = max(len(refs) for refs in groups.values())
    rows = []
    for key, refs in groups.items():
        label = "Whole chapter" if key == WHOLE_CHAPTER else f"v.\u00a0{key}"
        rows.append(VerseRow(key, label, _verse_preview(kjv_chapter, key), len(refs), heat_level(len(refs), max_count)))
    return rows


def chapter_authors(citations, index):
    authors = set()
    for citation in citations:
        work = index.work(citation.work_id)
        authors.add(work.author if work else "Unknown")
    return sorted(authors)


def citation_cards(citations, index, passages, chapter, verse_key=None,
                   active_categories=None, author=None):
    """Citation cards for a chapter, optionally narrowed to one verse group, categories, or author."""
    cards = []
    for citation in citations:
        if verse_key not in (None, ALL_VERSES) and primary_verse_key(citation.verse) != verse_key:
            continue
        work = index.work(citation.work_id)
        if work is None:
            continue
        if active_categories is not None and work_category(work) not in active_categories:
            continue
        if author and work.author != author:
            continue
        tag = f"v.\u00a0{citation.verse}" if citation.verse else "whole chapter"
        text = passages.get(str(citation.passage_id), "")
        cards.append(CitationCard(work, citation, tag, highlight(text, chapter, citation.verse)))
    return cards


def work_books(work_detail):
    """Book names in the order they first appear among a work's citations."""
    seen = []
    for citation in work_detail.citations:
        if citation.book_name not in seen:
            seen.append(citation.book_name)
    return seen


def work_cards(work_detail, passages, book=None):
    cards = []
    for citation in work_detail.citations:
        if book and citation.book_name != book:
            continue
        text = passages.get(str(citation.passage_id), "")
        cards.append(WorkCard(citation, citation.location, highlight(text, citation.chapter, citation.verse)))
    return cards


# ==============================================================================
#  CORPUS STORE
# ==============================================================================
class DataLoadError(Exception):
    """A data file could not be fetched or decoded."""

    def __init__(self, path, reason):
        super().__init__(f"Could not load {path}: {reason}")
        self.path = path
        self.reason = reason


def _normalize_newlines(text):
    return text.replace("\r\n", "\n").replace("\r", "\n")


class CorpusStore:
    """Fetch the static data files and cache per-book and per-work detail for the session."""

    def _make_session(self):
        return requests.Session()

    def __init__(self, data_root=None, session=None, max_workers=Config.FETCH_WORKERS):
        self.data_root = data_root or Config.DATA_ROOT
        self.session = session or self._make_session()
        self.book_cache = {}
        self.work_refs_cache = {}
        self.executor = ThreadPoolExecutor(max_workers=max_workers)
        self._passages = None
        self._kjv = None
        self._load_lock = threading.Lock()

    def close(self):
        self.executor.shutdown(wait=False)
        self.session.close()

    # --- raw files ---
    def _is_remote(self):
        return self.data_root.startswith(("http://", "https://"))

    def _fetch_remote(self, rel_path):
        url = f"{self.data_root.rstrip('/')}/{rel_path}"
        last_error = None
        for attempt in range(Config.FETCH_RETRIES):
            try:
                resp = self.session.get(url, timeout=Config.FETCH_TIMEOUT)
            except requests.RequestException as e:
                last_error = e
                LOGGER.warning("Fetch attempt %d for %s failed: %s", attempt + 1, url, e)
                time.sleep(Config.FETCH_BACKOFF)
                continue
            if resp.status_code >= 500:
                last_error = f"HTTP {resp.status_code}"
                LOGGER.warning("Fetch attempt %d for %s returned %s", attempt + 1, url, resp.status_code)
                time.sleep(Config.FETCH_BACKOFF)
                continue
            if resp.status_code != 200:
                raise DataLoadError(rel_path, f"HTTP {resp.status_code}")
            # A server that sets Content-Encoding has already decoded the payload.
            return resp.content, bool(resp.headers.get("Content-Encoding"))
        raise DataLoadError(rel_path, last_error)

    def _read_local(self, name):
        rel_path = name + Config.DATA_SUFFIX
        path = os.path.join(self.data_root, rel_path)
        if not os.path.exists(path):
            rel_path = name + Config.PLAIN_SUFFIX
            path = os.path.join(self.data_root, rel_path)
        try:
            with open(path, "rb") as f:
                return rel_path, f.read()
        except OSError as e:
            raise DataLoadError(rel_path, e)

    def fetch_json(self, name):
        """Load ``name`` (e.g. 'index', 'bible/genesis') as JSON, decompressing zstd payloads."""
        if self._is_remote():
            rel_path = name + Config.DATA_SUFFIX
            raw, decoded = self._fetch_remote(rel_path)
        else:
            rel_path, raw = self._read_local(name)
            decoded = False

        if rel_path.endswith(".zst") and not decoded:
            try:
                raw = zstandard.ZstdDecompressor().decompressobj().decompress(raw)
            except zstandard.ZstdError as e:
                raise DataLoadError(rel_path, e)
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise DataLoadError(rel_path, e)

    def _load_model(self, name, build):
        """Fetch ``name`` and build a model from it; JSON of the wrong shape fails like a missing file."""
        data = self.fetch_json(name)
        try:
            return build(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DataLoadError(name, f"unexpected data: {e!r}")

    # --- index & detail ---
    def load_index(self):
        index = self._load_model("index", IndexModel.from_json)
        LOGGER.info("Loaded index: %d books, %d works", len(index.books), len(index.works))
        return index

    def load_book(self, slug):
        if slug in self.book_cache:
            LOGGER.debug("Book cache hit for %s", slug)
            return self.book_cache[slug]
        book = self._load_model(f"bible/{slug}", lambda data: BookDetail.from_json(slug, data))
        self.book_cache[slug] = book
        return book

    def load_chapter(self, slug, chapter):
        return self.load_book(slug).chapter(chapter)

    def load_work(self, work_id):
        detail = self._load_model(f"manuscripts/{work_id}", lambda data: WorkDetail.from_json(work_id, data))
        self.work_refs_cache[work_id] = detail.citations
        return detail

    def work_citations(self, work_id):
        if work_id in self.work_refs_cache:
            return self.work_refs_cache[work_id]
        return self.load_work(work_id).citations

    def gather_work_citations(self, work_ids, progress_callback=None):
        """
        Citation lists for many works, fetching only those not cached yet.
        Returns (citations by work id, ids that failed to load).
        """
        work_ids = list(dict.fromkeys(work_ids))
        results = {wid: self.work_refs_cache[wid] for wid in work_ids if wid in self.work_refs_cache}
        to_fetch = [wid for wid in work_ids if wid not in results]
        failed = []
        total = len(work_ids)

        if not to_fetch:
            if progress_callback:
                progress_callback(total, total)
            return results, failed

        futures = {self.executor.submit(self.work_citations, wid): wid for wid in to_fetch}
        done = len(results)
        for future in as_completed(futures):
            wid = futures[future]
            try:
                results[wid] = future.result()
            except DataLoadError as e:
                LOGGER.warning("Could not load citations for work %s: %s", wid, e)
                failed.append(wid)
            done += 1
            if progress_callback:
                progress_callback(done, total)
        return results, failed

    # --- shared text stores ---
    def passages(self):
        """Passage id -> quoted text, loaded once and shared by every citation."""
        if self._passages is not None:
            return self._passages
        with self._load_lock:
            if self._passages is None:
                self._passages = self._load_model("passages", lambda raw: {
                    str(k): _normalize_newlines(v) for k, v in raw.items() if isinstance(v, str)
                })
                LOGGER.info("Loaded %d passages", len(self._passages))
        return self._passages

    def passage_text(self, passage_id):
        return self.passages().get(str(passage_id), "")

    def kjv_chapter(self, slug, chapter):
        """KJV verse texts of a chapter, or None when the optional KJV file is unavailable."""
        if self._kjv is None:
            with self._load_lock:
                if self._kjv is None:
                    try:
                        self._kjv = self._load_model("kjv", dict)
                    except DataLoadError as e:
                        LOGGER.warning("KJV text unavailable: %s", e)
                        return None
        return self._kjv.get(slug, {}).get(str(chapter))


def build_era_timeline(store, index, active_categories, bucket_width=None, progress_callback=None):
    """Fetch citation lists of the dated active works and bucket them by era."""
    dated_ids = [
        w.id for w in index.works
        if w.year is not None and work_category(w) in active_categories
    ]
    citations, failed = store.gather_work_citations(dated_ids, progress_callback=progress_callback)
    timeline = bucket_works_by_era(index.works, active_categories, citations, bucket_width=bucket_width)
    return replace(timeline, failed_work_ids=tuple(failed))
