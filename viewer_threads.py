"""Worker threads used by the viewer to load data without blocking the UI."""

# viewer_threads.py
from PyQt6.QtCore import QThread, pyqtSignal

from patristics_core import DataLoadError, build_era_timeline, get_logger

LOGGER = get_logger(__name__)


class IndexLoaderThread(QThread):
    """Load the corpus index and start the passage store download."""

    finished_signal = pyqtSignal(object)
    error_signal = pyqtSignal(str)

    def __init__(self, store):
        super().__init__()
        self.store = store

    def run(self):
        try:
            index = self.store.load_index()
        except DataLoadError as e:
            LOGGER.error("Index load failed: %s", e)
            self.error_signal.emit(str(e))
            return
        except Exception as e:
            LOGGER.exception("Unexpected error loading index")
            self.error_signal.emit(str(e))
            return
        self.finished_signal.emit(index)
        try:
            self.store.passages()
        except DataLoadError as e:
            # Retried on first citation render.
            LOGGER.warning("Passage preload failed: %s", e)


class ChapterLoaderThread(QThread):
    """Fetch a chapter's citations (and its KJV text) for one generation of the verse table."""

    # generation, ChapterDetail or None, KJV chapter or None
    finished_signal = pyqtSignal(int, object, object)
    error_signal = pyqtSignal(int, str)

    def __init__(self, store, slug, chapter, generation):
        super().__init__()
        self.store = store
        self.slug = slug
        self.chapter = chapter
        self.generation = generation

    def run(self):
        try:
            detail = self.store.load_chapter(self.slug, self.chapter)
            kjv = self.store.kjv_chapter(self.slug, self.chapter)
        except DataLoadError as e:
            self.error_signal.emit(self.generation, str(e))
            return
        except Exception as e:
            LOGGER.exception("Unexpected error loading %s %s", self.slug, self.chapter)
            self.error_signal.emit(self.generation, str(e))
            return
        self.finished_signal.emit(self.generation, detail, kjv)


class WorkLoaderThread(QThread):
    """Fetch a work's citation list and make sure passages are available."""

    finished_signal = pyqtSignal(int, object)
    error_signal = pyqtSignal(int, str)

    def __init__(self, store, work_id, generation):
        super().__init__()
        self.store = store
        self.work_id = work_id
        self.generation = generation

    def run(self):
        try:
            detail = self.store.load_work(self.work_id)
            self.store.passages()
        except DataLoadError as e:
            self.error_signal.emit(self.generation, str(e))
            return
        except Exception as e:
            LOGGER.exception("Unexpected error loading work %s", self.work_id)
            self.error_signal.emit(self.generation, str(e))
            return
        self.finished_signal.emit(self.generation, detail)


class EraTimelineThread(QThread):
    """Gather per-work citations and bucket them by era in the background."""

    progress_signal = pyqtSignal(int, int)
    finished_signal = pyqtSignal(int, object)
    error_signal = pyqtSignal(int, str)

    def __init__(self, store, index, active_categories, generation, bucket_width=None):
        super().__init__()
        self.store = store
        self.index = index
        self.active_categories = frozenset(active_categories)
        self.generation = generation
        self.bucket_width = bucket_width

    def run(self):
        def cb(curr, total): self.progress_signal.emit(curr, total)
        try:
            timeline = build_era_timeline(
                self.store, self.index, self.active_categories,
                bucket_width=self.bucket_width, progress_callback=cb,
            )
        except Exception as e:
            LOGGER.exception("Timeline generation %d failed", self.generation)
            self.error_signal.emit(self.generation, str(e))
            return
        if timeline.failed_work_ids:
            LOGGER.info("Timeline generation %d built without %d works", self.generation, len(timeline.failed_work_ids))
        self.finished_signal.emit(self.generation, timeline)
