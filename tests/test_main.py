"""Tests for the command line entry point."""

import os
import tempfile
import unittest

import pytest

from episodeprocessor.main import build_parser, main

pytestmark = [pytest.mark.unit]


class TestParser(unittest.TestCase):
    """Test argument parsing."""

    def test_process_arguments(self):
        args = build_parser().parse_args([
            "process", "show.mkv", "AA001", "10:00", "skip", "50:00",
            "--preset", "show.yaml", "-s", "5", "-e", "1:00:00", "-f", "--hw-enc", "nvidia",
        ])

        self.assertEqual(args.command, "process")
        self.assertEqual(args.cuts, ["10:00", "skip", "50:00"])
        self.assertEqual((args.start, args.end), ("5", "1:00:00"))
        self.assertTrue(args.force)
        self.assertEqual(args.hw_enc, "nvidia")

    def test_force_defaults_to_preset(self):
        args = build_parser().parse_args(["process", "show.mkv", "AA001"])
        self.assertIsNone(args.force)


class TestCommands(unittest.TestCase):
    """Test subcommands that don't encode anything."""

    def test_create_preset_adds_extension_and_refuses_overwrite(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "show")

            self.assertEqual(main(["create-preset", path]), 0)
            self.assertTrue(os.path.isfile(path + ".yaml"))
            self.assertEqual(main(["create-preset", path + ".yaml"]), 1)

    def test_missing_preset(self):
        self.assertEqual(main(["process", "show.mkv", "AA001", "--preset", "/nonexistent/show.yaml"]), 1)

    def test_no_formats(self):
        self.assertEqual(main(["process", "show.mkv", "AA001"]), 1)
