from unittest import TestCase

from patristics_core import (
    CategorizedChapter,
    CountOnlyChapter,
    IndexModel,
    book_total,
    chapter_from_json,
    filtered_count,
    heat_level,
)

from corpus_fixtures import INDEX_JSON


class HeatLevelTest(TestCase):
    def test_zero_count_is_always_cold(self):
        for max_count in (0, 1, 7, 100):
            self.assertEqual(heat_level(0, max_count), 0)

    def test_levels_follow_ratio_buckets(self):
        self.assertEqual(heat_level(1, 100), 1)
        self.assertEqual(heat_level(14, 100), 1)
        self.assertEqual(heat_level(39, 100), 2)
        self.assertEqual(heat_level(69, 100), 3)
        self.assertEqual(heat_level(100, 100), 4)

    def test_exact_boundaries_round_up(self):
        self.assertEqual(heat_level(15, 100), 2)
        self.assertEqual(heat_level(40, 100), 3)
        self.assertEqual(heat_level(70, 100), 4)
        # 3/20 is exactly 0.15, 7/10 exactly 0.70
        self.assertEqual(heat_level(3, 20), 2)
        self.assertEqual(heat_level(7, 10), 4)
        self.assertEqual(heat_level(2, 5), 3)

    def test_single_sibling_is_hottest(self):
        self.assertEqual(heat_level(5, 5), 4)


class FilteredCountTest(TestCase):
    def setUp(self):
        self.chapter = chapter_from_json({"ch": 8, "count": 10,
                                          "by_cat": {"Ante-Nicene": 3, "Post-Nicene": 5, "Other": 2}})

    def test_all_categories_give_total(self):
        self.assertIsInstance(self.chapter, CategorizedChapter)
        self.assertEqual(self.chapter.total, 10)
        self.assertEqual(filtered_count(self.chapter, {"Ante-Nicene", "Post-Nicene", "Other"}), 10)

    def test_no_categories_give_zero(self):
        self.assertEqual(filtered_count(self.chapter, set()), 0)

    def test_partial_and_unknown_categories(self):
        self.assertEqual(filtered_count(self.chapter, {"Post-Nicene", "Reformation"}), 5)

    def test_legacy_chapter_keeps_its_total(self):
        legacy = chapter_from_json({"ch": 1, "count": 2})
        self.assertIsInstance(legacy, CountOnlyChapter)
        self.assertEqual(filtered_count(legacy, set()), 2)
        self.assertEqual(filtered_count(legacy, {"Ante-Nicene"}), 2)

    def test_breakdown_is_read_only(self):
        with self.assertRaises(TypeError):
            self.chapter.by_category["Other"] = 99


class IndexModelTest(TestCase):
    def setUp(self):
        self.index = IndexModel.from_json(INDEX_JSON)

    def test_books_keep_load_order(self):
        self.assertEqual([b.slug for b in self.index.books], ["genesis", "romans", "tobit"])

    def test_missing_category_becomes_other(self):
        self.assertEqual(self.index.work(4).category, "Other")
        self.assertIsNone(self.index.work(4).year)

    def test_book_total_mixes_variants(self):
        romans = self.index.book("romans")
        self.assertEqual(book_total(romans, {"Post-Nicene"}), 2 + 5)
        self.assertEqual(book_total(self.index.book("genesis"), {"Ante-Nicene"}), 4)

    def test_duplicate_chapters_are_dropped(self):
        index = IndexModel.from_json({"books": [{"slug": "job", "name": "Job", "chapters": [
            {"ch": 1, "count": 1, "by_cat": {"Other": 1}},
            {"ch": 1, "count": 4, "by_cat": {"Other": 4}},
        ]}], "works": []})
        self.assertEqual(len(index.book("job").chapters), 1)
        self.assertEqual(index.book("job").chapter(1).total, 1)
