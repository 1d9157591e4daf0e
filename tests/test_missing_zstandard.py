import importlib
import sys
from unittest import TestCase, mock


class MissingZstandardImportTest(TestCase):
    def test_patristics_core_reports_missing_zstandard_cleanly(self):
        saved = sys.modules.pop("patristics_core", None)

        try:
            with mock.patch.dict(sys.modules, {"zstandard": None}):
                with self.assertRaises(ImportError) as ctx:
                    importlib.import_module("patristics_core")
        finally:
            sys.modules.pop("patristics_core", None)
            if saved is not None:
                sys.modules["patristics_core"] = saved

        self.assertIn("zstandard library missing", str(ctx.exception))
        self.assertNotIsInstance(ctx.exception, NameError)
