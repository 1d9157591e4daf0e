from unittest import TestCase

from patristics_core import Highlight, highlight, to_roman


class RomanNumeralTest(TestCase):
    def test_chapters(self):
        self.assertEqual(to_roman(8), "viii")
        self.assertEqual(to_roman(14), "xiv")
        self.assertEqual(to_roman(39), "xxxix")
        self.assertEqual(to_roman(150), "cl")


class HighlightTest(TestCase):
    def assertConcatenates(self, result, text):
        self.assertEqual(result.prefix + result.highlighted + result.suffix, text)

    def test_abbreviation_does_not_split_sentence(self):
        text = ("He wrote much. As the apostle says in Rom. viii. 13, if ye live after "
                "the flesh ye shall die. Then more.")
        result = highlight(text, 8, "13")
        self.assertEqual(result.prefix, "He wrote much. ")
        self.assertEqual(result.highlighted,
                         "As the apostle says in Rom. viii. 13, if ye live after the flesh ye shall die.")
        self.assertEqual(result.suffix, " Then more.")

    def test_arabic_chapter_and_colon(self):
        text = "Intro. Compare Rom. 8:13 with what follows. End."
        result = highlight(text, 8, "13")
        self.assertEqual(result.highlighted, "Compare Rom. 8:13 with what follows.")
        self.assertConcatenates(result, text)

    def test_uppercase_roman_matches(self):
        text = "See VIII. 13 here."
        self.assertEqual(highlight(text, 8, "13").highlighted, text)

    def test_range_uses_first_verse(self):
        text = "Quoting Rom. viii. 13 at length."
        self.assertEqual(highlight(text, 8, "13-17").highlighted, text)

    def test_no_locator_means_no_highlight(self):
        text = "Some passage. Rom. viii. 13."
        for locator in (None, "whole", "", "abc"):
            result = highlight(text, 8, locator)
            self.assertEqual(result, Highlight(text, "", ""))

    def test_empty_text(self):
        self.assertEqual(highlight("", 8, "13"), Highlight("", "", ""))
        self.assertEqual(highlight(None, 8, "13"), Highlight("", "", ""))

    def test_verse_must_be_whole_token(self):
        text = "As in Rom. viii. 130 we read."
        self.assertEqual(highlight(text, 8, "13").highlighted, "")
        self.assertEqual(highlight(text, 8, "13").prefix, text)

    def test_no_citation_in_text(self):
        text = "Nothing cited here. At all."
        self.assertEqual(highlight(text, 5, "2"), Highlight(text, "", ""))

    def test_paragraph_breaks_bound_the_sentence(self):
        text = "Intro text here\n\nthus 3. 16 shows love\n\nNext para"
        result = highlight(text, 3, "16")
        self.assertEqual(result.prefix, "Intro text here\n\n")
        self.assertEqual(result.highlighted, "thus 3. 16 shows love\n\n")
        self.assertEqual(result.suffix, "Next para")

    def test_closing_quote_stays_outside(self):
        text = 'He said, "Love as in John xiii. 34." And so on.'
        result = highlight(text, 13, "34")
        self.assertEqual(result.highlighted, 'He said, "Love as in John xiii. 34.')
        self.assertEqual(result.suffix, '" And so on.')

    def test_trailing_whitespace_ends_sentence(self):
        text = "Behold Ps. 23. 1!  "
        result = highlight(text, 23, "1")
        self.assertEqual(result.highlighted, "Behold Ps. 23. 1!")
        self.assertEqual(result.suffix, "  ")

    def test_leading_spaces_are_trimmed(self):
        text = "Note.  See Gen. i. 1 now"
        result = highlight(text, 1, "1")
        self.assertEqual(result.prefix, "Note.  ")
        self.assertEqual(result.highlighted, "See Gen. i. 1 now")
        self.assertEqual(result.suffix, "")

    def test_bracket_opens_next_sentence(self):
        text = "First part ends. (See Rom. viii. 9.) [Later] stuff."
        result = highlight(text, 8, "9")
        self.assertEqual(result.prefix, "First part ends. ")
        self.assertEqual(result.highlighted, "(See Rom. viii. 9.")
        self.assertConcatenates(result, text)

    def test_odd_inputs_never_raise(self):
        for chapter, locator in ((None, "1"), ("x", "1"), (3, 5), (0, "1")):
            result = highlight("Gen. 3. 5 and 0. 1 here.", chapter, locator)
            self.assertConcatenates(result, "Gen. 3. 5 and 0. 1 here.")
        self.assertEqual(highlight("Gen. 3. 5 here.", 3, 5).highlighted, "Gen. 3. 5 here.")
