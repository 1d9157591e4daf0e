"""Canonical sections of the Bible used for timeline aggregation."""

# -*- coding: utf-8 -*-
# patristics_canon.py

PENTATEUCH = "Pentateuch"
HISTORICAL = "Historical"
POETIC = "Poetic"
MAJOR_PROPHETS = "Major Prophets"
MINOR_PROPHETS = "Minor Prophets"
DEUTEROCANON = "Deuterocanon"
GOSPELS = "Gospels"
ACTS_EPISTLES = "Acts & Epistles"
REVELATION = "Revelation"

# Old Testament sections first, Deuterocanon between the Testaments.
SECTION_ORDER = (
    PENTATEUCH, HISTORICAL, POETIC, MAJOR_PROPHETS, MINOR_PROPHETS,
    DEUTEROCANON,
    GOSPELS, ACTS_EPISTLES, REVELATION,
)

_SECTION_BOOKS = {
    PENTATEUCH: (
        "genesis", "exodus", "leviticus", "numbers", "deuteronomy",
    ),
    HISTORICAL: (
        "joshua", "judges", "ruth", "1-samuel", "2-samuel", "1-kings", "2-kings",
        "1-chronicles", "2-chronicles", "ezra", "nehemiah", "esther",
    ),
    POETIC: (
        "job", "psalms", "proverbs", "ecclesiastes", "song-of-solomon",
    ),
    MAJOR_PROPHETS: (
        "isaiah", "jeremiah", "lamentations", "ezekiel", "daniel",
    ),
    MINOR_PROPHETS: (
        "hosea", "joel", "amos", "obadiah", "jonah", "micah", "nahum",
        "habakkuk", "zephaniah", "haggai", "zechariah", "malachi",
    ),
    GOSPELS: (
        "matthew", "mark", "luke", "john",
    ),
    ACTS_EPISTLES: (
        "acts", "romans", "1-corinthians", "2-corinthians", "galatians", "ephesians",
        "philippians", "colossians", "1-thessalonians", "2-thessalonians",
        "1-timothy", "2-timothy", "titus", "philemon", "hebrews",
        "james", "1-peter", "2-peter", "1-john", "2-john", "3-john", "jude",
    ),
    REVELATION: (
        "revelation",
    ),
}

BOOK_SECTIONS = {
    slug: section
    for section, slugs in _SECTION_BOOKS.items()
    for slug in slugs
}

SECTION_RANK = {section: rank for rank, section in enumerate(SECTION_ORDER)}


def canonical_section(book_slug):
    """Section of a Protestant-canon book; anything else counts as Deuterocanon."""
    return BOOK_SECTIONS.get(book_slug, DEUTEROCANON)
